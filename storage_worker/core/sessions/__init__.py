"""
Session artifact storage logic.

Contains the key naming scheme, session records, the object-store
protocol, and the transfer orchestrator that ties them together.
"""

from .errors import (
    ConfigurationError,
    InvalidSessionIdError,
    SessionNotFoundError,
    SessionStoreError,
    StoreNotReadyError,
    TransferError,
)
from .models import BulkDeleteResult, SessionDownload, SessionRecord, UploadResult
from .orchestrator import TransferOrchestrator

__all__ = [
    "BulkDeleteResult",
    "ConfigurationError",
    "InvalidSessionIdError",
    "SessionDownload",
    "SessionNotFoundError",
    "SessionRecord",
    "SessionStoreError",
    "StoreNotReadyError",
    "TransferError",
    "TransferOrchestrator",
    "UploadResult",
]
