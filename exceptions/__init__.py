# ShopCheck exception hierarchy
# Structured error handling with classification and recovery strategies

from .base import (
    ShopCheckError,
    CredentialStoreError,
    StoreNotFound,
    StorePoolEmpty,
    StoreExhausted,
    StoreIOError,
    StoreMalformedRecord,
    StoreLockTimeout,
    LLMProviderError,
    BrowserSessionError,
    ConfigurationError,
    ValidationError,
    ApiClientError,
    ErrorClassification,
    ErrorContext,
)

from .classification import (
    classify_error,
    is_retryable_error,
    get_recovery_strategy,
    create_error_context,
    convert_to_framework_exception,
    RecoveryStrategy,
)

from .logging import (
    StructuredErrorLogger,
    JSONFormatter,
    log_error_with_context,
    log_recovery_attempt,
    get_error_correlation_id,
    configure_error_logging,
)

__all__ = [
    # Base exceptions
    "ShopCheckError",
    "LLMProviderError",
    "BrowserSessionError",
    "ConfigurationError",
    "ValidationError",
    "ApiClientError",

    # Credential pool
    "CredentialStoreError",
    "StoreNotFound",
    "StorePoolEmpty",
    "StoreExhausted",
    "StoreIOError",
    "StoreMalformedRecord",
    "StoreLockTimeout",

    # Error classification
    "ErrorClassification",
    "ErrorContext",
    "classify_error",
    "is_retryable_error",
    "get_recovery_strategy",
    "create_error_context",
    "convert_to_framework_exception",
    "RecoveryStrategy",

    # Structured logging
    "StructuredErrorLogger",
    "JSONFormatter",
    "log_error_with_context",
    "log_recovery_attempt",
    "get_error_correlation_id",
    "configure_error_logging",
]
