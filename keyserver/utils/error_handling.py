from enum import Enum
from typing import Any, Dict, List, Optional
import json


class ErrorSeverity(Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class KeyserverError(Exception):
    """Base class for rotation cycle errors."""
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, device: Optional[str] = None, severity: Optional[ErrorSeverity] = None):
        self.message = message
        self.device = device
        if severity is not None:
            self.severity = severity
        super().__init__(f"{device + ': ' if device else ''}{message}")


class DeviceConnectionError(KeyserverError):
    """Device could not be reached or refused the session."""


class DeviceCommandError(KeyserverError):
    """A command or configuration RPC failed on a device."""

    def __init__(self, message: str, device: Optional[str] = None, command: Optional[str] = None):
        self.command = command
        super().__init__(message, device)


class PreconditionError(KeyserverError):
    """Device does not meet a configured precondition (NTP)."""


class ParseError(KeyserverError):
    """Missing or malformed status fields."""


class ConsistencyError(KeyserverError):
    """Key-chain state disagrees on a device or across the fleet."""


class PartialResponseError(KeyserverError):
    severity = ErrorSeverity.MEDIUM


class GenerationError(KeyserverError):
    severity = ErrorSeverity.MEDIUM


class RenderError(KeyserverError):
    severity = ErrorSeverity.MEDIUM


class RollbackError(KeyserverError):
    """Rollback failed; the fleet needs manual intervention."""
    severity = ErrorSeverity.CRITICAL


class ApplyError(KeyserverError):
    """
    Applying the new key-chain failed on a device.

    `stage` is "probe" or "apply". For apply failures `rolled_back` lists the
    devices that were reverted and `rollback_error` holds the rollback
    failure, if any.
    """
    severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        device: Optional[str] = None,
        stage: str = "apply",
        rolled_back: Optional[List[str]] = None,
        rollback_error: Optional[RollbackError] = None,
    ):
        self.stage = stage
        self.rolled_back = list(rolled_back or [])
        self.rollback_error = rollback_error
        if rollback_error is not None:
            message = f"{message}; rollback failed: {rollback_error}"
        super().__init__(message, device)


class ErrorCollector:
    """
    Collects errors raised during one rotation cycle for reporting.
    """
    def __init__(self):
        self.errors: List[Dict[str, Any]] = []

    def add_error(self, error: KeyserverError, stage: Optional[str] = None):
        self.errors.append({
            'type': type(error).__name__,
            'device': error.device,
            'stage': stage,
            'message': error.message,
            'severity': error.severity.value
        })

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_json(self) -> str:
        return json.dumps(self.errors, indent=2)

    def to_human_readable(self) -> str:
        return '\n'.join([
            f"[{e['severity'].upper()}] {e['type']} - {e['device'] or 'fleet'}: {e['message']}" for e in self.errors
        ])

    def get_errors(self) -> List[Dict[str, Any]]:
        return self.errors
