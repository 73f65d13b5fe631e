"""
Helpers for reading pull progress records
"""

from dataclasses import dataclass
from typing import Any, Optional

from ollie.core.framing import PARSING_ERROR_STATUS


@dataclass
class ProgressStats:
    """Fields of interest from one progress record"""
    status: str = ""
    digest: Optional[str] = None
    completed: int = 0
    total: int = 0
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> "ProgressStats":
        """
        Read a progress payload as sent by the server.

        Records are opaque to the pull engine; anything that is not a JSON
        object yields a status-only stats object.
        """
        if not isinstance(record, dict):
            return cls(status=str(record))

        def as_int(value: Any) -> int:
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return cls(
            status=str(record.get("status", "")),
            digest=record.get("digest"),
            completed=as_int(record.get("completed")),
            total=as_int(record.get("total")),
            error=record.get("error"),
        )

    @property
    def progress(self) -> float:
        """Progress as percentage (0-100)"""
        if self.total == 0:
            return 0.0
        return (self.completed / self.total) * 100

    @property
    def is_transfer(self) -> bool:
        """True when the record reports bytes of a layer"""
        return self.total > 0

    @property
    def is_parse_error(self) -> bool:
        return self.status == PARSING_ERROR_STATUS


def format_size(size_bytes: float) -> str:
    """Format bytes to human-readable string"""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_bytes) < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"

