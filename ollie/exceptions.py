"""
Custom exceptions for Ollie
"""

from typing import Optional


class OllieError(Exception):
    """Base exception for all Ollie errors"""
    pass


class PullError(OllieError):
    """Error while pulling a model"""
    pass


class DuplicatePullError(PullError):
    """A pull with the same identifier is already active"""

    def __init__(self, pull_id: str):
        super().__init__(f"Pull ID already active: {pull_id}")
        self.pull_id = pull_id


class NetworkError(OllieError):
    """Network-related error"""
    pass


class ServerError(OllieError):
    """Server answered with a non-success status"""

    def __init__(self, status: int, reason: Optional[str] = None):
        message = f"HTTP error: {status}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.status = status
        self.reason = reason


class ConfigError(OllieError):
    """Configuration error"""
    pass
