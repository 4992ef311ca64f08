"""
Structured Logging Utilities

Central logging setup for the fault harness: a human readable console handler
and an optional rotating JSON-lines file, both masking storage credentials
(account keys, SAS signatures and ``Authorization`` headers) before anything is
written.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional, Union

__all__ = [
    "LOGGER_NAME",
    "SDK_LOGGER_NAME",
    "CONSOLE_FORMAT",
    "JSONFormatter",
    "MaskingFormatter",
    "mask_secrets",
    "mask_sensitive_data",
    "setup_logging",
]

LOGGER_NAME = "BlobFaultRepro"
SDK_LOGGER_NAME = "azure"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MASK = "***masked***"

_SECRET_PATTERNS = (
    re.compile(r"(AccountKey=)[^;\s]+", re.IGNORECASE),
    re.compile(r"(SharedAccessSignature=)[^;\s]+", re.IGNORECASE),
    re.compile(r"([?&]sig=)[^&\s'\"]+", re.IGNORECASE),
    re.compile(r"((?:'|\")?Authorization(?:'|\")?\s*[:=]\s*(?:'|\")?)(?:SharedKey\s+)?[^'\",;\s]+", re.IGNORECASE),
)
_SENSITIVE_KEYS = {"authorization", "account_key", "accountkey", "connection_string", "sig", "sas_token"}

_MANAGED_ATTR = "_blobfault_managed"


def mask_secrets(text: str) -> str:
    """Replace credential material embedded in ``text``.

    Examples:
        >>> mask_secrets("AccountName=a;AccountKey=abc==;EndpointSuffix=x")
        'AccountName=a;AccountKey=***masked***;EndpointSuffix=x'
    """
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda match: match.group(1) + MASK, text)
    return text


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Mask secret-looking keys and credential substrings in a log payload."""
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            masked[key] = MASK
        elif isinstance(value, str):
            masked[key] = mask_secrets(value)
        else:
            masked[key] = value
    return masked


class MaskingFormatter(logging.Formatter):
    """Plain-text formatter that scrubs credentials from the rendered line."""

    def format(self, record: logging.LogRecord) -> str:
        return mask_secrets(super().format(record))


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    _STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key in self._STANDARD_ATTRS or key.startswith("_"):
                continue
            log_obj[key] = value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj))


def _parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Path] = None,
    *,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    http_trace: bool = False,
) -> logging.Logger:
    """Configure the package logger.

    Calling this again replaces the handlers installed by a previous call
    rather than stacking new ones on top.

    Args:
        level: Log level name or number.
        log_file: Optional JSON-lines destination, rotated at ``max_bytes``.
        max_bytes: Rotation threshold for ``log_file``.
        backup_count: Rotated files to keep.
        http_trace: Also route the storage SDK's ``azure`` loggers through the
            same handlers at DEBUG, so request and response headers are
            logged (masked) alongside the harness output.

    Returns:
        The configured ``BlobFaultRepro`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_parse_level(level))

    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_ATTR, False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(MaskingFormatter(CONSOLE_FORMAT))
    setattr(stream_handler, _MANAGED_ATTR, True)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(JSONFormatter())
        setattr(file_handler, _MANAGED_ATTR, True)
        logger.addHandler(file_handler)

    logger.propagate = True
    managed = [handler for handler in logger.handlers if getattr(handler, _MANAGED_ATTR, False)]
    _configure_sdk_logger(managed if http_trace else [])
    return logger


def _configure_sdk_logger(handlers: List[logging.Handler]) -> None:
    sdk_logger = logging.getLogger(SDK_LOGGER_NAME)
    for handler in list(sdk_logger.handlers):
        if getattr(handler, _MANAGED_ATTR, False):
            sdk_logger.removeHandler(handler)
    if not handlers:
        sdk_logger.setLevel(logging.NOTSET)
        return
    sdk_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        sdk_logger.addHandler(handler)
