"""
Domain errors for session artifact storage.

The taxonomy separates "absent" from "broken":
- SessionNotFoundError is recovered into explicit results wherever an
  operation defines a not-found signal (exists, metadata, download).
- TransferError means bytes stopped flowing mid-stream and is never retried here.
- ConfigurationError means the process should not be serving traffic.
"""


class SessionStoreError(Exception):
    """Base class for session storage failures."""
    pass


class SessionNotFoundError(SessionStoreError):
    """Raised when a session has no stored artifact."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidSessionIdError(SessionStoreError):
    """Raised when a session id cannot be used as a storage key."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Invalid session id {session_id!r}: use letters, digits, '.', '_' or '-' "
            "(max 128 characters, must start with a letter or digit)"
        )
        self.session_id = session_id


class TransferError(SessionStoreError):
    """Raised when streaming bytes to or from the store fails."""
    pass


class ConfigurationError(SessionStoreError):
    """Raised when the backend or bucket cannot be prepared."""
    pass


class StoreNotReadyError(ConfigurationError):
    """Raised when a data operation runs before the bucket is ensured."""

    def __init__(self) -> None:
        super().__init__("Session store is not initialized; call initialize() first")
