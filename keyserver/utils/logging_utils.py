"""
Logging utilities: JSON log records and redaction of credentials and key material.

Example:
    from keyserver.utils.logging_utils import redact_sensitive_data
    safe = redact_sensitive_data({'password': 'abc', 'user': 'netops'})
    # safe == {'password': '***REDACTED***', 'user': 'netops'}
"""

import logging
import json
import sys
from datetime import datetime, timezone

SENSITIVE_KEYS = {'password', 'passwd', 'secret', 'secrets', 'key', 'private_key', 'token', 'metrics_pass'}

REDACTED = '***REDACTED***'

# Attributes present on every LogRecord; anything else came in via `extra=`.
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


def redact_sensitive_data(obj):
    """
    Recursively redacts sensitive fields in dicts/lists.
    Keys matched (case-insensitive): password, passwd, secret, secrets, key, private_key, token, metrics_pass
    """
    if isinstance(obj, dict):
        return {
            k: (REDACTED if str(k).lower() in SENSITIVE_KEYS else redact_sensitive_data(v))
            for k, v in obj.items()
        }
    elif isinstance(obj, list):
        return [redact_sensitive_data(i) for i in obj]
    else:
        return obj


class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON with standard fields.
    """
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED_ATTRS}
        if extra:
            log_record.update(redact_sensitive_data(extra))
        return json.dumps(log_record, default=str)


def setup_json_logging(level=logging.INFO, output='stdout', file_path=None):
    """
    Set up structured JSON logging for the service.
    Args:
        level: Logging level (default: INFO)
        output: 'stdout', 'file' or 'both' (stderr plus file)
        file_path: Path to log file if output is 'file' or 'both'
    """
    if isinstance(level, str):
        level = level.upper()
    logger = logging.getLogger()
    logger.setLevel(level)
    # Remove existing handlers
    for h in list(logger.handlers):
        logger.removeHandler(h)
    handlers = []
    if output in ('file', 'both') and file_path:
        handlers.append(logging.FileHandler(file_path))
    if output == 'both':
        handlers.append(logging.StreamHandler(sys.stderr))
    elif not handlers:
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    return logger
