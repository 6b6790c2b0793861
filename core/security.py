"""
Credential masking for ShopCheck logs and reports.

Pooled test accounts carry real passwords for the demo sites, so anything that
reaches a log line or an Allure attachment goes through these helpers first:
- pattern based masking of passwords, tokens and LLM API keys in free text
- masking of the password column in credential pool rows
- key based masking of dictionaries (``password``, ``token``, ``api_key`` ...)
"""

import re
import logging
from typing import Any, Dict, List


SENSITIVE_PATTERNS: Dict[str, List[str]] = {
    'api_key': [
        r'sk-ant-[a-zA-Z0-9_-]{20,}',  # Anthropic keys
        r'sk-[a-zA-Z0-9_-]{20,}',      # OpenAI-style keys
        r'gsk_[a-zA-Z0-9]{20,}',       # Groq keys
        r'AIza[a-zA-Z0-9_-]{35}',      # Google API keys
    ],
    'password': [
        r'(?<=password=)[^&\s"\',}]+',
        r'(?<=["\']password["\']: ["\'])[^"\']+',
    ],
    'token': [
        r'(?<=bearer )[a-zA-Z0-9\-._~+/]+=*',
    ],
}

# "name","email","password",status - the third quoted field is the password
POOL_ROW_PATTERN = re.compile(r'^("(?:[^"]|"")*","(?:[^"]|"")*",")((?:[^"]|"")*)(",.*)$', re.MULTILINE)

SENSITIVE_KEYS = ('password', 'passwd', 'token', 'secret', 'api_key', 'apikey', 'authorization')


def mask_credential(value: str, mask_char: str = "*", reveal_chars: int = 2) -> str:
    """
    Mask a credential, revealing only a few leading and trailing characters.

    Short values are replaced by a fixed-width mask so their length does not leak.
    """
    if not value or len(value) <= reveal_chars * 4:
        return mask_char * 8

    start = value[:reveal_chars]
    end = value[-reveal_chars:]
    return f"{start}{mask_char * 8}{end}"


def mask_pool_rows(text: str) -> str:
    """Mask the password column of any credential pool rows found in ``text``."""
    return POOL_ROW_PATTERN.sub(lambda m: f"{m.group(1)}{mask_credential(m.group(2))}{m.group(3)}", text)


def mask_sensitive_data(data: Any) -> Any:
    """
    Recursively mask sensitive data in dicts, lists and strings.

    Dictionary values are masked when their key looks sensitive; strings are
    scanned with ``SENSITIVE_PATTERNS`` and for pool rows. Returns a copy.
    """
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if isinstance(value, str) and any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
                result[key] = mask_credential(value)
            else:
                result[key] = mask_sensitive_data(value)
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(mask_sensitive_data(item) for item in data)

    if isinstance(data, str):
        masked = mask_pool_rows(data)
        for patterns in SENSITIVE_PATTERNS.values():
            for pattern in patterns:
                masked = re.sub(pattern, lambda m: mask_credential(m.group(0)),
                                masked, flags=re.IGNORECASE)
        return masked

    return data


def secure_log_formatter(record: logging.LogRecord) -> logging.LogRecord:
    """Mask the message and arguments of a log record in place."""
    if isinstance(record.msg, str):
        record.msg = mask_sensitive_data(record.msg)

    if record.args:
        if isinstance(record.args, dict):
            record.args = mask_sensitive_data(record.args)
        else:
            record.args = tuple(mask_sensitive_data(list(record.args)))

    return record


class SecureLogHandler(logging.Handler):
    """
    Wraps another handler and masks sensitive data before delegating to it.
    """

    def __init__(self, base_handler: logging.Handler):
        super().__init__()
        self.base_handler = base_handler
        self.setLevel(base_handler.level)
        self.setFormatter(base_handler.formatter)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            # Copy so other handlers still see the original record
            secure_record = logging.makeLogRecord(record.__dict__)
            secure_record = secure_log_formatter(secure_record)
            self.base_handler.emit(secure_record)
        except Exception:
            self.handleError(record)


def sanitize_for_allure(data: Any) -> str:
    """Render ``data`` as a string that is safe to attach to an Allure report."""
    if isinstance(data, (dict, list)):
        return str(mask_sensitive_data(data))
    if isinstance(data, str):
        return mask_sensitive_data(data)
    return str(data)


def setup_secure_logging():
    """Wrap every root logger handler with ``SecureLogHandler``."""
    root_logger = logging.getLogger()

    existing_handlers = root_logger.handlers.copy()
    root_logger.handlers.clear()

    for handler in existing_handlers:
        if isinstance(handler, SecureLogHandler):
            root_logger.addHandler(handler)
        else:
            root_logger.addHandler(SecureLogHandler(handler))

    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        root_logger.addHandler(SecureLogHandler(console_handler))
