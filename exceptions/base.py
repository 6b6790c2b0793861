import json
import time
from enum import Enum
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field


class ErrorClassification(Enum):
    # Classification system for error types and recovery strategies
    RETRYABLE = "retryable"          # Can be automatically retried
    TERMINAL = "terminal"            # Should fail fast, no retry
    CONFIGURATION = "configuration"  # Environment/config related
    TRANSIENT = "transient"          # Temporary network/lock contention
    VALIDATION = "validation"        # Data validation failures
    DEPLETED = "depleted"            # Resource pool has nothing to hand out


@dataclass
class ErrorContext:
    # Error context carried along with framework exceptions
    correlation_id: str
    timestamp: float = field(default_factory=time.time)
    component: str = ""
    operation: str = ""
    provider: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    recovery_suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "provider": self.provider,
            "retry_count": self.retry_count,
            "metadata": self.metadata,
            "stack_trace": self.stack_trace,
            "recovery_suggestions": self.recovery_suggestions,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, indent=2)


class ShopCheckError(Exception):
    # Base exception for all suite errors

    def __init__(
        self,
        message: str,
        error_context: Optional[ErrorContext] = None,
        classification: ErrorClassification = ErrorClassification.TERMINAL,
        cause: Optional[Exception] = None,
        recovery_suggestions: Optional[List[str]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_context = error_context or ErrorContext(correlation_id="unknown")
        self.classification = classification
        self.cause = cause
        self.recovery_suggestions = recovery_suggestions or []

        if recovery_suggestions:
            self.error_context.recovery_suggestions.extend(recovery_suggestions)

    def is_retryable(self) -> bool:
        return self.classification in (
            ErrorClassification.RETRYABLE,
            ErrorClassification.TRANSIENT
        )

    def get_actionable_message(self) -> str:
        # Error message followed by recovery suggestions
        base_message = f"{self.message}"

        if self.recovery_suggestions:
            suggestions = "\n".join(f"  - {suggestion}" for suggestion in self.recovery_suggestions)
            base_message += f"\n\nRecovery suggestions:\n{suggestions}"

        if self.error_context.provider:
            base_message += f"\n\nProvider: {self.error_context.provider}"

        if self.error_context.correlation_id != "unknown":
            base_message += f"\nCorrelation ID: {self.error_context.correlation_id}"

        return base_message

    def __str__(self) -> str:
        return self.get_actionable_message()


# --- Credential pool errors ---


class CredentialStoreError(ShopCheckError):
    # Base for every failure raised by a credential store

    default_classification = ErrorClassification.TERMINAL
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        recovery_suggestions: Optional[List[str]] = None
    ):
        self.path = path

        suggestions = list(recovery_suggestions or self.default_suggestions)
        if path:
            suggestions.append(f"Credential pool file: {path}")

        if error_context:
            error_context.component = "Credential Store"
            if path:
                error_context.metadata["path"] = path

        super().__init__(
            message=message,
            error_context=error_context,
            classification=self.default_classification,
            cause=cause,
            recovery_suggestions=suggestions
        )


class StoreNotFound(CredentialStoreError):
    # Pool file does not exist yet
    default_classification = ErrorClassification.DEPLETED
    default_suggestions = [
        "Run a registration test first so created users are saved to the pool",
        "Check CREDENTIAL_POOL_PATH points at the expected file",
    ]


class StorePoolEmpty(CredentialStoreError):
    # Pool file holds only the header row
    default_classification = ErrorClassification.DEPLETED
    default_suggestions = [
        "The pool has no users yet; fresh credentials will be generated",
    ]


class StoreExhausted(CredentialStoreError):
    # Every pooled user has already been consumed
    default_classification = ErrorClassification.DEPLETED
    default_suggestions = [
        "All pooled users are marked used; fresh credentials will be generated",
        "Register more users to refill the pool",
    ]


class StoreIOError(CredentialStoreError):
    # Filesystem failure while reading or writing the pool
    default_suggestions = [
        "Check the pool directory exists and is writable",
        "Check free disk space",
    ]


class StoreMalformedRecord(CredentialStoreError):
    # A data row does not follow the "name","email","password",status layout

    default_classification = ErrorClassification.VALIDATION
    default_suggestions = [
        "Fix or remove the offending row by hand",
        "Disable CREDENTIAL_STRICT_PARSING to skip malformed rows with a warning",
    ]

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        line_number: Optional[int] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.line_number = line_number
        if error_context and line_number is not None:
            error_context.metadata["line_number"] = line_number
        super().__init__(message, path=path, error_context=error_context, cause=cause)


class StoreLockTimeout(CredentialStoreError):
    # Another worker held the pool lock for longer than the wait timeout

    default_classification = ErrorClassification.TRANSIENT
    default_suggestions = [
        "Another test worker is holding the pool lock; retry shortly",
        "Remove a stale .lock file left behind by a killed process",
        "Increase CREDENTIAL_LOCK_TIMEOUT",
    ]

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        timeout: Optional[float] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.timeout = timeout
        if error_context and timeout is not None:
            error_context.metadata["timeout"] = timeout
        super().__init__(message, path=path, error_context=error_context, cause=cause)


# --- Harness errors ---


class LLMProviderError(ShopCheckError):
    # LLM provider failures behind the browser agent

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.provider = provider
        self.status_code = status_code

        recovery_suggestions = [
            f"Check {provider} API key configuration and validity",
            f"Verify {provider} service status and rate limits",
            "Switch LLM_PROVIDER to another configured provider",
        ]

        classification = ErrorClassification.RETRYABLE
        if status_code:
            if status_code in (401, 403):
                classification = ErrorClassification.CONFIGURATION
                recovery_suggestions.insert(0, f"API key authentication failed for {provider}")
            elif status_code in (400, 422):
                classification = ErrorClassification.TERMINAL
                recovery_suggestions.insert(0, "Request validation failed - check input parameters")
            elif status_code == 429:
                classification = ErrorClassification.TRANSIENT
                recovery_suggestions.insert(0, "Rate limit exceeded - back off before retrying")

        if error_context:
            error_context.provider = provider
            error_context.component = "LLM Provider"

        super().__init__(
            message=f"LLM Provider Error ({provider}): {message}",
            error_context=error_context,
            classification=classification,
            cause=cause,
            recovery_suggestions=recovery_suggestions
        )


class BrowserSessionError(ShopCheckError):
    # Browser session failures - typically retryable

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        browser_type: Optional[str] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.session_id = session_id
        self.browser_type = browser_type

        recovery_suggestions = [
            "Restart the browser session",
            "Run `playwright install chromium` if the browser binary is missing",
        ]

        if "timeout" in message.lower():
            recovery_suggestions.insert(0, "Increase timeout values for browser operations")

        if error_context:
            error_context.component = "Browser Session"
            if browser_type:
                error_context.metadata["browser_type"] = browser_type
            if session_id:
                error_context.metadata["session_id"] = session_id

        super().__init__(
            message=f"Browser Session Error: {message}",
            error_context=error_context,
            classification=ErrorClassification.RETRYABLE,
            cause=cause,
            recovery_suggestions=recovery_suggestions
        )


class ConfigurationError(ShopCheckError):
    # Configuration issues - terminal, should fail fast

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
        expected_format: Optional[str] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.config_key = config_key
        self.config_file = config_file
        self.expected_format = expected_format

        recovery_suggestions = [
            "Review environment variables and the .env file",
        ]

        if config_key:
            recovery_suggestions.insert(0, f"Set required configuration: {config_key}")

        if config_file:
            recovery_suggestions.insert(0, f"Check configuration file: {config_file}")

        if expected_format:
            recovery_suggestions.insert(0, f"Expected format: {expected_format}")

        if error_context:
            error_context.component = "Configuration"
            if config_key:
                error_context.metadata["config_key"] = config_key
            if config_file:
                error_context.metadata["config_file"] = config_file

        super().__init__(
            message=f"Configuration Error: {message}",
            error_context=error_context,
            classification=ErrorClassification.CONFIGURATION,
            cause=cause,
            recovery_suggestions=recovery_suggestions
        )


class ValidationError(ShopCheckError):
    # Test expectation not met by the agent or API response

    def __init__(
        self,
        message: str,
        expected_value: Optional[Any] = None,
        actual_value: Optional[Any] = None,
        validation_type: str = "content",
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.expected_value = expected_value
        self.actual_value = actual_value
        self.validation_type = validation_type

        recovery_suggestions = [
            "Review test expectations against the current page content",
            "Check whether the demo site changed its wording",
        ]

        if expected_value and actual_value:
            recovery_suggestions.insert(0,
                f"Expected: '{expected_value}' but got: '{actual_value}'")

        if error_context:
            error_context.component = "Validation"
            error_context.operation = validation_type
            error_context.metadata.update({
                "expected_value": expected_value,
                "actual_value": actual_value,
                "validation_type": validation_type,
            })

        super().__init__(
            message=f"Validation Error ({validation_type}): {message}",
            error_context=error_context,
            classification=ErrorClassification.VALIDATION,
            cause=cause,
            recovery_suggestions=recovery_suggestions
        )


class ApiClientError(ShopCheckError):
    # Transport level failure talking to the demo site's REST API

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        url: Optional[str] = None,
        error_context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.method = method
        self.url = url

        if error_context:
            error_context.component = "API Client"
            error_context.operation = f"{method} {url}" if method else ""

        super().__init__(
            message=f"API Client Error: {message}",
            error_context=error_context,
            classification=ErrorClassification.TRANSIENT,
            cause=cause,
            recovery_suggestions=[
                "Check network connectivity to the demo site",
                "Increase API_TIMEOUT if the site is slow",
            ]
        )
