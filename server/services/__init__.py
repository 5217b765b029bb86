"""Services package for the Palace server."""

from .session_recovery import SessionRecovery

__all__ = [
    "SessionRecovery",
]
