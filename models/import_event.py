"""
Import event schemas.

Events are published per (job_id, company_id) and streamed to
subscribers as server-sent events.
"""

from pydantic import Field
from typing import Any
from enum import Enum
from datetime import datetime, timezone

from models.base import FrozenSchema


class ImportEventType(str, Enum):
    """Event types emitted while an import job runs."""
    STARTED = "started"
    PROGRESS = "progress"
    PHASE_CHANGED = "phase-changed"
    PRODUCT_IMPORTED = "product-imported"
    PRODUCT_SKIPPED = "product-skipped"
    PRODUCT_ERROR = "product-error"
    CONFLICT_DETECTED = "conflict-detected"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EVENT_TYPES = {
    ImportEventType.COMPLETED,
    ImportEventType.FAILED,
    ImportEventType.CANCELLED,
}


class ImportEvent(FrozenSchema):
    """One event on a job's stream."""

    type: ImportEventType
    job_id: str
    company_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_sse(self) -> str:
        """Server-sent event frame."""
        return f"event: {self.type.value}\ndata: {self.model_dump_json()}\n\n"
