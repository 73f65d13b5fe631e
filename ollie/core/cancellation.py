"""
Cancellation tokens for in-flight pulls
"""

import logging
import threading
from typing import Optional

from ollie.exceptions import DuplicatePullError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag a pull loop polls between chunks. Safe to set from any thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"


class CancellationRegistry:
    """
    Maps pull IDs to the cancellation token of the pull currently using them.

    An entry exists only while its pull is running; the orchestrator
    unregisters it on every exit path. All map access takes a single lock,
    and no method does anything slower than a dict operation under it, so
    it is safe to call from UI threads or signal handlers.
    """

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, pull_id: str) -> CancellationToken:
        """Create and store a fresh token for pull_id"""
        token = CancellationToken()
        with self._lock:
            if pull_id in self._tokens:
                raise DuplicatePullError(pull_id)
            self._tokens[pull_id] = token
        logger.debug("Registered pull %s", pull_id)
        return token

    def request_cancel(self, pull_id: str) -> bool:
        """Set the token for pull_id. Returns False if no such pull is active."""
        with self._lock:
            token = self._tokens.get(pull_id)
            if token is None:
                return False
            token.cancel()
        logger.debug("Cancellation requested for pull %s", pull_id)
        return True

    def unregister(self, pull_id: str) -> None:
        with self._lock:
            self._tokens.pop(pull_id, None)
        logger.debug("Unregistered pull %s", pull_id)

    def get(self, pull_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(pull_id)

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def __contains__(self, pull_id: object) -> bool:
        with self._lock:
            return pull_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
