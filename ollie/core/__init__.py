"""
Core pull engine for Ollie
"""

from ollie.core.cancellation import CancellationRegistry, CancellationToken
from ollie.core.events import EventBus, NotificationSink, RecordingSink
from ollie.core.framing import LineFramer, parse_progress_line
from ollie.core.models import PullJob, PullResult, PullStatus, ModelInfo
from ollie.core.progress import ProgressStats, format_size
from ollie.core.puller import Puller, pull_model

__all__ = [
    "Puller",
    "pull_model",
    "CancellationRegistry",
    "CancellationToken",
    "EventBus",
    "NotificationSink",
    "RecordingSink",
    "LineFramer",
    "parse_progress_line",
    "PullJob",
    "PullResult",
    "PullStatus",
    "ModelInfo",
    "ProgressStats",
    "format_size",
]
