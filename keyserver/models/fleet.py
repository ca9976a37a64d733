"""Models for fleet configuration, device key-chain state and rotation material."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

# Key-chain slots 0..31; one is active, the ring fills the rest.
SLOT_COUNT = 32
RING_SIZE = SLOT_COUNT - 1
SECRET_BYTES = 32

# Value devices report for an empty "next key" field.
NONE_SENTINEL = "None"

# Junos start-time format, e.g. 2024-06-01.12:00:00
ACTIVATION_TIME_FORMAT = "%Y-%m-%d.%H:%M:%S"


class CycleOutcome(float, Enum):
    """Per-cycle result exported on the outcome gauge."""

    ERROR = 0.0
    WARNING = 0.5
    SUCCESS = 1.0


class CycleStage(str, Enum):
    """Stage a rotation cycle reached."""

    STATUS = "status"
    GENERATE = "generate"
    RENDER = "render"
    APPLY = "apply"
    DONE = "done"


class FleetConfig(BaseModel):
    """Immutable per-process fleet configuration."""

    model_config = ConfigDict(frozen=True)

    user: str = Field(..., description="Login used on every device")
    private_key_file: Optional[str] = Field(None, description="SSH private key used for device logins")
    password: Optional[SecretStr] = Field(None, description="Password or key passphrase for device logins")
    port: int = Field(22, description="NETCONF-over-SSH port")
    interval_hours: int = Field(..., gt=0, description="Hours between consecutive key activations")
    keychain: str = Field(..., min_length=1, description="Name of the key-chain to rotate")
    ntp_required: bool = Field(False, description="Refuse to rotate unless every device is NTP synchronized")
    devices: List[str] = Field(..., min_length=1, description="Ordered list of device addresses")

    @field_validator("devices")
    @classmethod
    def validate_devices(cls, value: List[str]) -> List[str]:
        """Reject blank and duplicate device addresses."""
        cleaned = [device.strip() for device in value]
        if any(not device for device in cleaned):
            raise ValueError("device addresses must not be empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("device addresses must be unique")
        return cleaned


class DeviceKeyState(BaseModel):
    """Key-chain snapshot for one device."""

    address: str
    active_send_key: int
    active_receive_key: int
    next_send_key: Optional[str] = None
    next_receive_key: Optional[str] = None
    next_key_time: Optional[str] = None

    @property
    def ready_for_keys(self) -> bool:
        """True when no key is staged on the device."""
        return self.next_send_key is None and self.next_receive_key is None and self.next_key_time is None


class FleetVerdict(BaseModel):
    """Fleet-wide rotation decision."""

    needs_rotation: bool
    active_slot: int = Field(..., ge=0, lt=SLOT_COUNT)
    responding_device_count: int


class KeyRing(BaseModel):
    """Key material for one rotation cycle, indexed by ring position."""

    active_slot: int = Field(..., ge=0, lt=SLOT_COUNT)
    secrets: List[SecretStr]
    names: List[str]
    activation_times: List[str]

    @model_validator(mode="after")
    def check_lengths(self) -> "KeyRing":
        if not len(self.secrets) == len(self.names) == len(self.activation_times):
            raise ValueError("secrets, names and activation_times must have equal length")
        return self

    def __len__(self) -> int:
        return len(self.secrets)


class CommitProgress(BaseModel):
    """Devices that accepted the new configuration during one apply pass."""

    committed: List[str] = Field(default_factory=list)
    quirks: List[str] = Field(default_factory=list, description="Devices whose success was inferred from a benign envelope mismatch")

    def record(self, device: str, quirk: bool = False) -> None:
        self.committed.append(device)
        if quirk:
            self.quirks.append(device)


class CycleReport(BaseModel):
    """Summary of the most recent rotation cycle."""

    outcome: CycleOutcome
    stage: CycleStage
    message: str = ""
    rotated: bool = False
    active_slot: Optional[int] = None
    responding_device_count: int = 0
    errors: List[dict] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime
