"""
Data models for pull operations
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import uuid

from ollie.core.constants import PULL_ENDPOINT


class PullStatus(Enum):
    """Status of a pull"""
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PullStatus.COMPLETED, PullStatus.CANCELLED, PullStatus.FAILED)


@dataclass
class PullResult:
    """Outcome returned to the caller of a command"""
    success: bool
    error: Optional[str] = None
    pull_id: Optional[str] = None
    status: Optional[PullStatus] = None

    @classmethod
    def ok(cls, **kwargs: Any) -> "PullResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> "PullResult":
        return cls(success=False, error=error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: {"success": bool, "error": str | None}"""
        return {"success": self.success, "error": self.error}


def new_pull_id() -> str:
    """Generate a fresh pull identifier"""
    return str(uuid.uuid4())


@dataclass
class PullJob:
    """Bookkeeping for one pull, owned by the task running it"""
    name: str
    server_url: str
    id: str = field(default_factory=new_pull_id)

    status: PullStatus = PullStatus.STARTING
    error_message: Optional[str] = None
    records_received: int = 0

    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def endpoint(self) -> str:
        return f"{self.server_url.rstrip('/')}{PULL_ENDPOINT}"

    def finish(self, status: PullStatus, error: Optional[str] = None) -> None:
        """Move the job into a terminal state. The first terminal state sticks."""
        if not status.is_terminal:
            raise ValueError(f"{status} is not a terminal state")
        if self.status.is_terminal:
            return
        self.status = status
        self.error_message = error
        self.completed_at = datetime.now()

    def to_result(self) -> PullResult:
        return PullResult(
            success=self.status == PullStatus.COMPLETED,
            error=self.error_message,
            pull_id=self.id,
            status=self.status,
        )


@dataclass
class ModelDetails:
    """Details block of a local model"""
    format: str = ""
    family: str = ""
    families: Optional[list[str]] = None
    parameter_size: str = ""
    quantization_level: str = ""


@dataclass
class ModelInfo:
    """A model installed on the server"""
    name: str
    modified_at: str = ""
    size: int = 0
    digest: str = ""
    details: Optional[ModelDetails] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ModelInfo":
        details = data.get("details")
        return cls(
            name=data["name"],
            modified_at=data.get("modified_at", ""),
            size=data.get("size", 0),
            digest=data.get("digest", ""),
            details=ModelDetails(
                format=details.get("format", ""),
                family=details.get("family", ""),
                families=details.get("families"),
                parameter_size=details.get("parameter_size", ""),
                quantization_level=details.get("quantization_level", ""),
            ) if isinstance(details, dict) else None,
        )
