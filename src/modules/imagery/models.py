"""
Task Model and Processing Command

- Task: durable record of one upload's processing lifecycle
- ProcessingCommand: point-in-time wire copy of the fields a worker needs
- Operation: closed set of transforms the pipeline knows how to apply
"""

import posixpath
import uuid
from enum import Enum
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


ORIGINAL_PATH_TEMPLATE = "original/{task_id}{extension}"
PROCESSED_PATH_TEMPLATE = "processed/{operation}/{filename}"


class TaskStatus(str, Enum):
    """Task status states."""
    PROCESSING = "PROCESSING"     # Saga committed, worker has not finished
    COMPLETE = "COMPLETE"         # Worker pass over the command finished
    FAILED = "FAILED"             # An operation failed


class Operation(str, Enum):
    """Transform operations the worker can dispatch."""
    RESIZE = "resize"
    THUMBNAIL = "thumbnail"
    WATERMARK = "watermark"

    @classmethod
    def parse(cls, name: str) -> Optional["Operation"]:
        """Return the matching operation, or None for an unknown name."""
        try:
            return cls(name)
        except ValueError:
            return None


# Fixed pipeline applied to every upload
DEFAULT_OPERATIONS: List[str] = [op.value for op in Operation]


class TaskStatusPolicy(str, Enum):
    """How the end of a worker pass resolves the terminal status."""
    LAST_WRITE_WINS = "last_write_wins"       # COMPLETE overwrites FAILED
    WORST_STATUS_WINS = "worst_status_wins"   # FAILED survives the pass

    def terminal_status(self, any_failed: bool) -> TaskStatus:
        if self is TaskStatusPolicy.WORST_STATUS_WINS and any_failed:
            return TaskStatus.FAILED
        return TaskStatus.COMPLETE


def new_task_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def original_path(task_id: str, extension: str) -> str:
    """Storage key of the uploaded source blob."""
    return ORIGINAL_PATH_TEMPLATE.format(task_id=task_id, extension=extension)


def processed_path(operation: str, source_path: str) -> str:
    """
    Storage key of a derived blob.

    Deterministic in (operation, base filename of the source), so running the
    same operation twice overwrites rather than accumulates.
    """
    return PROCESSED_PATH_TEMPLATE.format(
        operation=operation,
        filename=posixpath.basename(source_path)
    )


class Task(SQLModel, table=True):
    """Durable record of one processing request."""
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_task_id, primary_key=True)
    status: str = Field(default=TaskStatus.PROCESSING.value, index=True)
    original_path: str
    requested_operations: List[str] = Field(
        default_factory=lambda: list(DEFAULT_OPERATIONS),
        sa_column=Column(JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "id": self.id,
            "status": self.status,
            "original_path": self.original_path,
            "requested_operations": list(self.requested_operations or []),
            "processed_paths": {
                name: processed_path(name, self.original_path)
                for name in self.requested_operations or []
                if Operation.parse(name) is not None
            },
            "created_at": self.created_at.isoformat() if self.created_at else None
        }


class ProcessingCommand(BaseModel):
    """
    Message published for the worker.

    A copy of the Task taken at submit time; the worker must not assume the
    task store still agrees with it. Unknown fields are ignored on read.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    original_path: str
    requested_operations: List[str]
    created_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "ProcessingCommand":
        return cls(
            id=task.id,
            original_path=task.original_path,
            requested_operations=list(task.requested_operations),
            created_at=task.created_at
        )

    def to_payload(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_payload(cls, payload) -> "ProcessingCommand":
        """Decode a wire payload; raises ValueError on malformed input."""
        return cls.model_validate_json(payload)
