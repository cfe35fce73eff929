"""
PostgREST client over httpx for the pharmacy tables (medicines, stock,
sales, sale_items, delivery_requests, prescription_history).
Keeps the supabase-py fluent shape without its dependency chain.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

import httpx

from rx_fulfillment.config import settings

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class SupabaseClient:
    """Service-role access to the REST endpoint of one Supabase project."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = 30,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.http = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
        )
        logger.info("Supabase REST client → %s", self.rest_url)

    def table(self, name: str) -> "TableQuery":
        return TableQuery(self, name)


class TableQuery:
    """One request against one table. Filters may repeat a column."""

    def __init__(self, client: SupabaseClient, table: str):
        self._client = client
        self._table = table
        self._method = "GET"
        self._body: Any = None
        self._filters: list[tuple[str, str]] = []
        self._modifiers: dict[str, str] = {}

    # ── Verbs ──

    def select(self, columns: str = "*") -> "TableQuery":
        self._method = "GET"
        self._modifiers["select"] = columns
        return self

    def insert(self, rows: Row | list[Row]) -> "TableQuery":
        self._method = "POST"
        self._body = rows
        return self

    def update(self, fields: Row) -> "TableQuery":
        self._method = "PATCH"
        self._body = fields
        return self

    # ── Filters ──

    def _filter(self, column: str, op: str, value: Any) -> "TableQuery":
        self._filters.append((column, f"{op}.{value}"))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "eq", value)

    def or_(self, filters: str) -> "TableQuery":
        """Raw disjunction, e.g. 'generic_name.ilike.*napa*,brand_name.ilike.*napa*'."""
        self._filters.append(("or", f"({filters})"))
        return self

    # ── Modifiers ──

    def order(self, column: str, desc: bool = False) -> "TableQuery":
        self._modifiers["order"] = f"{column}.{'desc' if desc else 'asc'}"
        return self

    def limit(self, count: int) -> "TableQuery":
        self._modifiers["limit"] = str(count)
        return self

    def execute(self) -> "QueryResult":
        url = f"{self._client.rest_url}/{self._table}"
        params = self._filters + list(self._modifiers.items())
        try:
            resp = self._client.http.request(self._method, url, params=params, json=self._body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Supabase %s %s failed [%d]: %s",
                self._method, self._table, exc.response.status_code, exc.response.text[:500],
            )
            raise
        except httpx.HTTPError as exc:
            logger.error("Supabase %s %s error: %s", self._method, self._table, exc, exc_info=True)
            raise

        data = resp.json() if resp.content else []
        return QueryResult(data=[data] if isinstance(data, dict) else data)


class QueryResult:
    """Rows returned by PostgREST (always a list)."""

    def __init__(self, data: list[Row]):
        self.data = data

    def first(self) -> Row | None:
        return self.data[0] if self.data else None


@lru_cache(maxsize=1)
def get_supabase() -> SupabaseClient:
    """Return the singleton Supabase REST client."""
    return SupabaseClient(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
