"""Pydantic models and schemas."""

from keyserver.models.fleet import (
    ACTIVATION_TIME_FORMAT,
    NONE_SENTINEL,
    RING_SIZE,
    SECRET_BYTES,
    SLOT_COUNT,
    CommitProgress,
    CycleOutcome,
    CycleReport,
    CycleStage,
    DeviceKeyState,
    FleetConfig,
    FleetVerdict,
    KeyRing,
)

__all__ = [
    # Constants
    "ACTIVATION_TIME_FORMAT",
    "NONE_SENTINEL",
    "RING_SIZE",
    "SECRET_BYTES",
    "SLOT_COUNT",

    # Fleet and device state
    "FleetConfig",
    "DeviceKeyState",
    "FleetVerdict",

    # Rotation material and progress
    "KeyRing",
    "CommitProgress",

    # Cycle reporting
    "CycleOutcome",
    "CycleReport",
    "CycleStage",
]
