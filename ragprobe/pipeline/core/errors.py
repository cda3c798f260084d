from __future__ import annotations


class RagprobeError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(RagprobeError):
    """The run cannot start: zero tasks, unreadable input directory, bad test-case file."""


class RunCancelled(RagprobeError):
    """Raised inside the engine once the cancel token is observed."""

    def __init__(self, message: str = "Run cancelled by user."):
        super().__init__(message)


class MalformedResponseError(RagprobeError):
    """Chat service answered but without textual content; retried like a failure."""
