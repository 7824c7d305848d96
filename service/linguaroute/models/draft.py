"""Pydantic models for offline drafts awaiting replay."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class DraftStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DraftStatus.SUCCEEDED, DraftStatus.FAILED)


class OfflineDraft(BaseModel):
    """A translation submitted while the caller was offline."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str = Field(..., min_length=1, max_length=128)
    tenant_id: str = ""
    channel_id: Optional[str] = None
    original_text: str = Field(..., min_length=1)
    source_language: Optional[str] = None
    target_language: str
    tone: str = "polite"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status: DraftStatus = DraftStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    error_reason: Optional[str] = None
    last_error_code: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    result_text: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# Fields the replay engine may change through DraftStore.update_if_status
DRAFT_PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "attempts",
        "error_reason",
        "last_error_code",
        "next_attempt_at",
        "result_text",
        "completed_at",
    }
)
