# guided_dialogue/models/session_state.py

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from guided_dialogue.core.exceptions import SessionStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class FieldValue(BaseModel):
    value: Optional[str] = None
    confirmed: bool = False
    skipped: bool = False
    extracted_at: datetime = Field(default_factory=utcnow)


class StepProgress(BaseModel):
    """Progress of one session through one step. field_values keeps collection order."""
    step_id: str
    status: StepStatus = StepStatus.PENDING
    field_values: Dict[str, FieldValue] = Field(default_factory=dict)
    confirmation_snapshot: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def has_value(self, field_id: str) -> bool:
        entry = self.field_values.get(field_id)
        return entry is not None and entry.value is not None

    def is_answered(self, field_id: str) -> bool:
        """A field counts as answered once it holds a value or was skipped."""
        entry = self.field_values.get(field_id)
        return entry is not None and (entry.value is not None or entry.skipped)

    def get_value(self, field_id: str) -> Optional[str]:
        entry = self.field_values.get(field_id)
        return entry.value if entry else None

    def _ensure_mutable(self) -> None:
        if self.status == StepStatus.COMPLETED:
            raise SessionStateError(
                message=f"Step '{self.step_id}' is completed; its field values are immutable",
                details={"step_id": self.step_id}
            )

    def record_value(self, field_id: str, value: str) -> None:
        self._ensure_mutable()
        self.field_values[field_id] = FieldValue(value=value)

    def record_skip(self, field_id: str) -> None:
        self._ensure_mutable()
        self.field_values[field_id] = FieldValue(skipped=True)

    def reset(self) -> None:
        self._ensure_mutable()
        self.field_values.clear()
        self.confirmation_snapshot = None
        self.status = StepStatus.IN_PROGRESS

    def complete(self, snapshot: Optional[str]) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = utcnow()
        self.confirmation_snapshot = snapshot
        for entry in self.field_values.values():
            entry.confirmed = True


class ConfirmationRecord(BaseModel):
    """The last checkpoint the user confirmed and the reply it produced"""
    step_id: str
    next_step_id: Optional[str] = None
    response_text: str
    confirmed_at: datetime = Field(default_factory=utcnow)


class DialogueSession(BaseModel):
    """
    Persisted progress of one user through one flow instance.

    version increases on every successful save and is used by the session
    repositories for optimistic concurrency checks.
    """
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    flow_id: str
    current_step_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    step_progress: List[StepProgress] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    last_activity_at: datetime = Field(default_factory=utcnow)
    last_confirmation: Optional[ConfirmationRecord] = None
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def get_step_progress(self, step_id: Optional[str]) -> Optional[StepProgress]:
        """Latest progress record for a step (cyclic flows may revisit a step)"""
        for progress in reversed(self.step_progress):
            if progress.step_id == step_id:
                return progress
        return None

    def ensure_step_progress(self, step_id: str) -> StepProgress:
        """
        Progress record for the step, started if still pending.

        Re-entering a completed step opens a fresh record; completed records
        are never reopened.
        """
        progress = self.get_step_progress(step_id)
        if progress is None or progress.status == StepStatus.COMPLETED:
            progress = StepProgress(step_id=step_id)
            self.step_progress.append(progress)
        if progress.status == StepStatus.PENDING:
            progress.status = StepStatus.IN_PROGRESS
            progress.started_at = utcnow()
        return progress

    def current_step_progress(self) -> Optional[StepProgress]:
        return self.get_step_progress(self.current_step_id)

    def collected_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for progress in self.step_progress:
            if progress.status != StepStatus.COMPLETED:
                continue
            for field_id, entry in progress.field_values.items():
                if entry.value is not None:
                    data[field_id] = entry.value
        return data

    def touch(self) -> None:
        self.last_activity_at = utcnow()

    def mark_completed(self) -> None:
        self.status = SessionStatus.COMPLETED
        self.completed_at = utcnow()
