"""
Error types shared by the RunClub map service.
"""
from typing import Optional


class RunClubError(Exception):
    """Base class for runclub map errors."""


class ConfigInvalid(RunClubError):
    """Configuration is missing or malformed (raised at explicit init, never on import)."""


class SourceUnavailable(RunClubError):
    """The spreadsheet row source could not be reached, authenticated or found."""

    def __init__(self, message: str, attempts: Optional[list] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class CacheCorrupt(RunClubError):
    """A cache entry could not be decoded or has an unexpected shape."""
