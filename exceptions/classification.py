import traceback
import uuid
from typing import Dict, Any, Optional
from enum import Enum

from .base import (
    ShopCheckError,
    CredentialStoreError,
    StoreLockTimeout,
    LLMProviderError,
    BrowserSessionError,
    ConfigurationError,
    ValidationError,
    ApiClientError,
    ErrorClassification,
    ErrorContext,
)


class RecoveryStrategy(Enum):
    # Available recovery strategies for different error types
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    FRESH_CREDENTIALS = "fresh_credentials"
    SESSION_RESTART = "session_restart"
    FAIL_FAST = "fail_fast"


def create_error_context(
    correlation_id: Optional[str] = None,
    component: str = "",
    operation: str = "",
    provider: Optional[str] = None,
    retry_count: int = 0,
    **metadata
) -> ErrorContext:
    # Factory function to create error context with correlation ID
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())[:8]

    stack = traceback.format_exc()
    return ErrorContext(
        correlation_id=correlation_id,
        component=component,
        operation=operation,
        provider=provider,
        retry_count=retry_count,
        metadata=metadata,
        stack_trace=stack if stack.strip() != "NoneType: None" else None
    )


def classify_error(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None
) -> ErrorClassification:
    # Classification based on exception type, then on message heuristics
    if isinstance(exception, ShopCheckError):
        return exception.classification

    if isinstance(exception, (FileNotFoundError, PermissionError, IsADirectoryError)):
        return ErrorClassification.TERMINAL

    if _is_network_error(exception):
        return ErrorClassification.TRANSIENT

    if _is_llm_provider_error(exception):
        return _classify_llm_error(exception)

    if _is_browser_session_error(exception):
        return ErrorClassification.RETRYABLE

    if isinstance(exception, (KeyError, EnvironmentError)) or "config" in str(exception).lower():
        return ErrorClassification.CONFIGURATION

    if isinstance(exception, AssertionError):
        return ErrorClassification.VALIDATION

    return ErrorClassification.TERMINAL


def is_retryable_error(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None
) -> bool:
    classification = classify_error(exception, context)

    return classification in (
        ErrorClassification.RETRYABLE,
        ErrorClassification.TRANSIENT
    )


def get_recovery_strategy(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None
) -> RecoveryStrategy:
    # Determine appropriate recovery strategy for an error
    context = context or {}

    if isinstance(exception, StoreLockTimeout):
        return RecoveryStrategy.RETRY_WITH_BACKOFF

    if isinstance(exception, CredentialStoreError):
        # A pool miss is recovered by the caller generating a new account
        if exception.classification in (ErrorClassification.DEPLETED, ErrorClassification.VALIDATION):
            return RecoveryStrategy.FRESH_CREDENTIALS
        return RecoveryStrategy.FAIL_FAST

    if isinstance(exception, LLMProviderError):
        if exception.status_code in (401, 403):
            return RecoveryStrategy.FAIL_FAST

    if isinstance(exception, BrowserSessionError):
        if "timeout" in str(exception).lower():
            return RecoveryStrategy.RETRY_WITH_BACKOFF
        return RecoveryStrategy.SESSION_RESTART

    classification = classify_error(exception, context)
    if classification in (ErrorClassification.TRANSIENT, ErrorClassification.RETRYABLE):
        if context.get("retry_count", 0) > 2:
            return RecoveryStrategy.FAIL_FAST
        return RecoveryStrategy.RETRY_WITH_BACKOFF

    return RecoveryStrategy.FAIL_FAST


def convert_to_framework_exception(
    exception: Exception,
    context: Optional[ErrorContext] = None,
    component: str = "Unknown",
    operation: str = "Unknown"
) -> ShopCheckError:
    # Wrap a foreign exception into the suite hierarchy, keeping its classification

    if isinstance(exception, ShopCheckError):
        return exception

    if context is None:
        context = create_error_context(
            component=component,
            operation=operation
        )

    error_message = str(exception)
    classification = classify_error(exception)

    if _is_network_error(exception):
        return ApiClientError(
            message=error_message,
            error_context=context,
            cause=exception
        )

    if _is_llm_provider_error(exception):
        return LLMProviderError(
            message=error_message,
            provider=context.provider or "unknown",
            status_code=getattr(exception, "status_code", None),
            error_context=context,
            cause=exception
        )

    if _is_browser_session_error(exception):
        return BrowserSessionError(
            message=error_message,
            error_context=context,
            cause=exception
        )

    if classification == ErrorClassification.CONFIGURATION:
        return ConfigurationError(
            message=error_message,
            error_context=context,
            cause=exception
        )

    if classification == ErrorClassification.VALIDATION:
        return ValidationError(
            message=error_message,
            error_context=context,
            cause=exception
        )

    return ShopCheckError(
        message=error_message,
        error_context=context,
        classification=classification,
        cause=exception
    )


# Private helper functions for error classification

def _is_llm_provider_error(exception: Exception) -> bool:
    error_str = str(exception).lower()
    exception_type = type(exception).__name__.lower()

    llm_indicators = [
        "api_key", "openai", "anthropic", "gemini", "groq", "azure",
        "rate limit", "quota", "llm",
    ]

    return any(indicator in error_str or indicator in exception_type
               for indicator in llm_indicators)


def _is_browser_session_error(exception: Exception) -> bool:
    error_str = str(exception).lower()
    exception_type = type(exception).__name__.lower()

    browser_indicators = [
        "browser", "playwright", "chromium", "page", "navigation",
        "screenshot", "target closed",
    ]

    return any(indicator in error_str or indicator in exception_type
               for indicator in browser_indicators)


def _is_network_error(exception: Exception) -> bool:
    exception_types = ("connectionerror", "timeout", "httperror", "urlerror", "sslerror")
    exception_type = type(exception).__name__.lower()

    return (isinstance(exception, (ConnectionError, TimeoutError)) or
            any(exc_type in exception_type for exc_type in exception_types))


def _classify_llm_error(exception: Exception) -> ErrorClassification:
    error_str = str(exception).lower()

    if any(indicator in error_str for indicator in ["rate limit", "quota", "429"]):
        return ErrorClassification.TRANSIENT

    if any(indicator in error_str for indicator in ["401", "403", "unauthorized", "forbidden", "api_key"]):
        return ErrorClassification.CONFIGURATION

    if any(indicator in error_str for indicator in ["400", "422", "bad request"]):
        return ErrorClassification.TERMINAL

    return ErrorClassification.RETRYABLE
