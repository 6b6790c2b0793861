import json
import logging
import time
import uuid
from typing import Dict, Any, Optional

from .base import ShopCheckError, ErrorContext, ErrorClassification
from .classification import get_recovery_strategy

from core.security import mask_sensitive_data, SecureLogHandler, setup_secure_logging


ERROR_LOGGER_NAME = "shopcheck.errors"


class StructuredErrorLogger:
    # JSON-structured error logger with correlation ID tracking

    def __init__(self, logger_name: str = ERROR_LOGGER_NAME):
        self.logger = logging.getLogger(logger_name)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    def log_error(
        self,
        exception: Exception,
        context: Optional[ErrorContext] = None,
        level: str = "error",
        additional_fields: Optional[Dict[str, Any]] = None
    ) -> str:
        # Log error as one JSON document and return its correlation ID
        correlation_id = get_error_correlation_id()

        if context is None:
            from .classification import create_error_context
            context = create_error_context(correlation_id=correlation_id)

        if not context.correlation_id or context.correlation_id == "unknown":
            context.correlation_id = correlation_id

        if not isinstance(exception, ShopCheckError):
            from .classification import convert_to_framework_exception
            framework_exception = convert_to_framework_exception(exception, context)
        else:
            framework_exception = exception

        log_entry = {
            "timestamp": time.time(),
            "level": level.upper(),
            "correlation_id": context.correlation_id,
            "error": {
                "type": type(exception).__name__,
                "message": framework_exception.message,
                "classification": framework_exception.classification.value,
                "is_retryable": framework_exception.is_retryable(),
                "recovery_strategy": get_recovery_strategy(exception).value,
                "recovery_suggestions": framework_exception.recovery_suggestions
            },
            "context": context.to_dict(),
        }

        # No trace for routine pool misses
        if framework_exception.classification is ErrorClassification.DEPLETED:
            log_entry["context"]["stack_trace"] = None

        if additional_fields:
            log_entry.update(additional_fields)

        cause = exception.__cause__ or getattr(exception, "cause", None)
        if cause is not None:
            log_entry["error"]["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause)
            }

        log_entry = mask_sensitive_data(log_entry)

        log_method = getattr(self.logger, level.lower(), self.logger.error)
        log_method(json.dumps(log_entry, default=str))

        return context.correlation_id

    def log_recovery_attempt(
        self,
        correlation_id: str,
        strategy: str,
        attempt_number: int,
        success: bool,
        details: Optional[Dict[str, Any]] = None
    ):
        log_entry = {
            "timestamp": time.time(),
            "level": "INFO",
            "correlation_id": correlation_id,
            "event_type": "recovery_attempt",
            "recovery": {
                "strategy": strategy,
                "attempt_number": attempt_number,
                "success": success,
                "details": mask_sensitive_data(details or {})
            }
        }

        self.logger.info(json.dumps(log_entry, default=str))


class JSONFormatter(logging.Formatter):
    # Renders records as single-line JSON; pre-built JSON messages pass through

    def format(self, record: logging.LogRecord) -> str:
        try:
            message = json.loads(record.getMessage())
            if isinstance(message, dict):
                return json.dumps(message, default=str)
        except (json.JSONDecodeError, TypeError):
            pass

        log_entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


_structured_logger = StructuredErrorLogger(ERROR_LOGGER_NAME)


def log_error_with_context(
    exception: Exception,
    context: Optional[ErrorContext] = None,
    level: str = "error",
    **additional_fields
) -> str:
    return _structured_logger.log_error(
        exception=exception,
        context=context,
        level=level,
        additional_fields=additional_fields
    )


def get_error_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


def log_recovery_attempt(
    correlation_id: str,
    strategy: str,
    attempt_number: int,
    success: bool,
    **details
):
    _structured_logger.log_recovery_attempt(
        correlation_id=correlation_id,
        strategy=strategy,
        attempt_number=attempt_number,
        success=success,
        details=details
    )


def configure_error_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    enable_security: bool = True
):
    # Configure the error logger; handlers are wrapped with masking when enabled
    logger = logging.getLogger(ERROR_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if format_type.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        if enable_security:
            handler = SecureLogHandler(handler)
        logger.addHandler(handler)

    if enable_security:
        setup_secure_logging()
        logger.info("Secure logging configured - sensitive data will be masked")
