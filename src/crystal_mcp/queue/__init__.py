"""Durable multi-consumer work queue package."""

from .claims import (
    CLAIMS_FILE_NAME,
    TIMEOUT_FILE_NAME,
    ClaimStore,
    FileLock,
    expired_claims,
    is_claim_live,
    read_claim_timeout,
    sweep_expired,
)
from .manager import SNAPSHOT_FILE_NAME, QueueManager, QueueState
from .models import (
    SNAPSHOT_SCHEMA_VERSION,
    CategoryProgress,
    QueueProgress,
    QueueSnapshot,
    SessionInfo,
    snapshot_from_dict,
    snapshot_to_dict,
)

__all__ = [
    "CLAIMS_FILE_NAME",
    "SNAPSHOT_FILE_NAME",
    "SNAPSHOT_SCHEMA_VERSION",
    "TIMEOUT_FILE_NAME",
    "CategoryProgress",
    "ClaimStore",
    "FileLock",
    "QueueManager",
    "QueueProgress",
    "QueueSnapshot",
    "QueueState",
    "SessionInfo",
    "expired_claims",
    "is_claim_live",
    "read_claim_timeout",
    "snapshot_from_dict",
    "snapshot_to_dict",
    "sweep_expired",
]
