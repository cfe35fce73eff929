"""
Exception hierarchy for the prescription pipeline.

Every error that reaches the user carries a message and the actions
the user can take next (retry, skip, add to inventory, cancel).
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for pipeline failures."""

    default_actions: tuple[str, ...] = ("retry", "cancel")

    def __init__(self, message: str, next_actions: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.next_actions = list(next_actions) if next_actions is not None else list(self.default_actions)

    @property
    def user_message(self) -> str:
        if not self.next_actions:
            return f"{self.message}."
        return f"{self.message}. You can: {', '.join(self.next_actions)}."


class HardStageFailure(PipelineError):
    """Text extraction or structured analysis failed — the scan is aborted."""

    def __init__(self, stage: str, message: str):
        super().__init__(message, ["retry", "cancel"])
        self.stage = stage


class SoftAdvisoryFailure(PipelineError):
    """An interaction or dosage check failed. Logged, never propagated."""

    def __init__(self, source: str, message: str):
        super().__init__(message, [])
        self.source = source


class FulfillmentFailure(PipelineError):
    """Sale persistence or stock mutation failed, or nothing was left to fulfill."""


class NothingToFulfill(FulfillmentFailure):
    default_actions = ("add to inventory", "cancel")

    def __init__(self) -> None:
        super().__init__("Nothing to fulfill: no medications were added to the sale")


class FulfillmentInProgressError(FulfillmentFailure):
    default_actions = ("wait",)

    def __init__(self, prescription_id: str):
        super().__init__(f"Fulfillment already in progress for prescription {prescription_id}")
        self.prescription_id = prescription_id
