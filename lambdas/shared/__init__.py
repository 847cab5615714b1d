"""Shared utilities for Scan Gateway Lambda functions."""

from .config import Config
from .exceptions import (
    AnalysisError,
    AnalysisTimeoutError,
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentRequiredError,
    RemoteError,
    ScanGatewayError,
    StorageError,
    TransportError,
    ValidationError,
)
from .models import (
    Account,
    Document,
    Payment,
    PaymentStatus,
    RateWindow,
)
from .store import (
    AccountStore,
    DynamoDBAccountStore,
    JsonFileStore,
    MemoryStore,
    create_store,
)

__all__ = [
    # Config
    "Config",
    # Storage
    "AccountStore",
    "DynamoDBAccountStore",
    "JsonFileStore",
    "MemoryStore",
    "create_store",
    # Exceptions
    "AnalysisError",
    "AnalysisTimeoutError",
    "ConfigurationError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "PaymentRequiredError",
    "RemoteError",
    "ScanGatewayError",
    "StorageError",
    "TransportError",
    "ValidationError",
    # Models
    "Account",
    "Document",
    "Payment",
    "PaymentStatus",
    "RateWindow",
]
