"""Error taxonomy for the sync engine.

Caller-facing errors (NotFoundError, PreconditionError, ConflictError) are
raised directly from trigger/cancel operations. Source and per-record errors
are captured into the running job instead of escaping the orchestrator.
"""


class SyncError(Exception):
    """Base class for sync engine errors."""


class NotFoundError(SyncError):
    """Referenced store or tenant does not exist."""


class PreconditionError(SyncError):
    """Store is not connected or has no credential."""


class ConflictError(SyncError):
    """A sync is already in progress for the store."""


class SourceUnavailable(SyncError):
    """The external API call failed (network, timeout, 429, 5xx)."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class InvalidCredential(SyncError):
    """The external API rejected the credential (401/403) or none is stored."""


class TransformError(SyncError):
    """A raw external record could not be mapped to the local schema."""

    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


class PersistenceError(SyncError):
    """A single record failed to upsert."""

    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id
