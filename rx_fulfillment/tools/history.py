"""
Prescription history: an append-only log keyed by prescription id.
The latest entry for an id is its current status.

Two implementations share one interface (append / latest / list):
  - SupabaseHistoryRepository — prescription_history table
  - InMemoryHistoryRepository — process-local, for tests and single-device use
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from rx_fulfillment.models.fulfillment import HistoryRecord
from rx_fulfillment.tools.supabase_client import SupabaseClient, get_supabase

logger = logging.getLogger(__name__)


class HistoryRepository(Protocol):
    def append(self, record: HistoryRecord) -> HistoryRecord: ...

    def latest(self, prescription_id: str) -> Optional[HistoryRecord]: ...

    def list(self, prescription_id: Optional[str] = None) -> list[HistoryRecord]: ...


class InMemoryHistoryRepository:

    def __init__(self) -> None:
        self._records: list[HistoryRecord] = []
        self._lock = threading.Lock()

    def append(self, record: HistoryRecord) -> HistoryRecord:
        with self._lock:
            self._records.append(record)
        logger.info("History: %s → %s", record.prescription_id, record.status)
        return record

    def latest(self, prescription_id: str) -> HistoryRecord | None:
        with self._lock:
            for record in reversed(self._records):
                if record.prescription_id == prescription_id:
                    return record
        return None

    def list(self, prescription_id: str | None = None) -> list[HistoryRecord]:
        """Newest first."""
        with self._lock:
            records = [
                r for r in self._records
                if prescription_id is None or r.prescription_id == prescription_id
            ]
        return list(reversed(records))


class SupabaseHistoryRepository:

    def __init__(self, sb: SupabaseClient | None = None):
        self._sb = sb

    @property
    def sb(self) -> SupabaseClient:
        if self._sb is None:
            self._sb = get_supabase()
        return self._sb

    def append(self, record: HistoryRecord) -> HistoryRecord:
        self.sb.table("prescription_history").insert(record.model_dump(mode="json")).execute()
        logger.info("History: %s → %s", record.prescription_id, record.status)
        return record

    def latest(self, prescription_id: str) -> HistoryRecord | None:
        resp = (
            self.sb.table("prescription_history")
            .select("*")
            .eq("prescription_id", prescription_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        row = resp.first()
        return HistoryRecord(**row) if row else None

    def list(self, prescription_id: str | None = None) -> list[HistoryRecord]:
        query = self.sb.table("prescription_history").select("*").order("created_at", desc=True)
        if prescription_id:
            query = query.eq("prescription_id", prescription_id)
        return [HistoryRecord(**row) for row in query.execute().data or []]
