"""
Error types raised by the timeline, asset and export modules.

The HTTP layer maps them onto status codes; nothing in here is retried.
"""

from typing import Optional


class LinecueError(Exception):
    """Base class for all linecue errors."""


class ValidationError(LinecueError, ValueError):
    """A precondition of an edit or export was not met."""


class NotFoundError(ValidationError):
    """A project, chapter, line or asset does not exist."""


class DecodeError(LinecueError, ValueError):
    """An audio payload could not be decoded."""

    def __init__(self, message: str, asset_id: Optional[str] = None, line_id: Optional[str] = None):
        super().__init__(message)
        self.asset_id = asset_id
        self.line_id = line_id


class StoreIOError(LinecueError, OSError):
    """The asset store failed to read, write or delete a payload."""


class FormatInvariantError(LinecueError, AssertionError):
    """Internal inconsistency while building an output file."""
