import logging

from .constants import APP_NAME, SCHEMA_VERSION
from .errors import (
    IndexNotFound,
    InvalidOperation,
    NotInitialized,
    NotSupported,
    RecordNotFound,
    StoreError,
    TransactionAborted,
    UnknownCollection,
    UpgradeBlocked,
)
from .store import GridFlowStore

VERSION = "1.0.0"

logger = logging.getLogger(APP_NAME)

__all__ = [
    "APP_NAME",
    "SCHEMA_VERSION",
    "VERSION",
    "GridFlowStore",
    "IndexNotFound",
    "InvalidOperation",
    "NotInitialized",
    "NotSupported",
    "RecordNotFound",
    "StoreError",
    "TransactionAborted",
    "UnknownCollection",
    "UpgradeBlocked",
]
