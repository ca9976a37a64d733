"""Device sessions and reply parsing."""

from keyserver.devices.client import (
    BENIGN_ENVELOPE_MISMATCH,
    DeviceSession,
    SessionFactory,
    is_benign_apply_quirk,
    open_session,
)
from keyserver.devices.parsing import (
    KEYCHAIN_COMMAND,
    UPTIME_COMMAND,
    extract_keychain_fields,
    is_ntp_synchronized,
)

__all__ = [
    "BENIGN_ENVELOPE_MISMATCH",
    "DeviceSession",
    "SessionFactory",
    "is_benign_apply_quirk",
    "open_session",
    "KEYCHAIN_COMMAND",
    "UPTIME_COMMAND",
    "extract_keychain_fields",
    "is_ntp_synchronized",
]
