"""Exceptions raised by the committee core.

Per-backend and per-judge failures are carried as data (error fields on
events, responses and call results). Only failures that make a whole
operation meaningless are raised.
"""


class CommitteeError(Exception):
    """Base exception for all committee errors."""
    pass


class ConfigurationError(CommitteeError):
    """Raised when required configuration (e.g. an API key) is missing."""
    pass


class PreconditionError(CommitteeError):
    """Raised when a request cannot start: blank prompt, too few backends or responses."""
    pass


class BackendError(CommitteeError):
    """Raised when a single backend call fails and the caller needs that one result."""

    def __init__(self, message: str, backend_id: str | None = None, http_status: int | None = None):
        super().__init__(message)
        self.backend_id = backend_id
        self.http_status = http_status


class ParsingError(CommitteeError):
    """Raised when model output cannot be turned into the requested structure."""
    pass
