"""
Fleet key-chain status aggregation.

Every device is polled in configured order; the first failure aborts the
cycle. The per-device snapshots are then folded into a single verdict by
``summarize_fleet``, which performs no I/O.
"""
import logging
from typing import List, Sequence, Tuple

from keyserver.devices.client import SessionFactory, open_session
from keyserver.devices.parsing import (
    KEYCHAIN_COMMAND,
    UPTIME_COMMAND,
    extract_keychain_fields,
    is_ntp_synchronized,
)
from keyserver.metrics import keyserver_device_operations_total
from keyserver.models.fleet import NONE_SENTINEL, SLOT_COUNT, DeviceKeyState, FleetConfig, FleetVerdict
from keyserver.utils.error_handling import (
    ConsistencyError,
    DeviceCommandError,
    DeviceConnectionError,
    ParseError,
    PartialResponseError,
    PreconditionError,
)

logger = logging.getLogger(__name__)


def _optional(value: str):
    return None if value == NONE_SENTINEL else value


def build_device_state(address: str, fields: dict) -> DeviceKeyState:
    """
    Validate raw key-chain fields from one device.

    Raises:
        ConsistencyError: If active send and receive keys differ
        ParseError: If the active key is not a valid slot number
    """
    send, receive = fields["active_send_key"], fields["active_receive_key"]
    if send != receive:
        raise ConsistencyError(f"differing send ({send}) and receive ({receive}) keys", address)
    try:
        active = int(send)
    except ValueError:
        raise ParseError(f"active key {send!r} is not a slot number", address) from None
    if not 0 <= active < SLOT_COUNT:
        raise ParseError(f"active key {active} is outside slots 0..{SLOT_COUNT - 1}", address)
    return DeviceKeyState(
        address=address,
        active_send_key=active,
        active_receive_key=active,
        next_send_key=_optional(fields["next_send_key"]),
        next_receive_key=_optional(fields["next_receive_key"]),
        next_key_time=_optional(fields["next_key_time"]),
    )


def _check_ntp(session, address: str) -> None:
    try:
        uptime = session.query(UPTIME_COMMAND)
    except DeviceCommandError as exc:
        keyserver_device_operations_total.labels(operation="ntp_check", status="error").inc()
        raise PreconditionError(f"could not read time source: {exc.message}", address) from exc
    if not is_ntp_synchronized(uptime):
        keyserver_device_operations_total.labels(operation="ntp_check", status="error").inc()
        raise PreconditionError("ntp mandatory but device is not NTP synchronized", address)
    keyserver_device_operations_total.labels(operation="ntp_check", status="success").inc()


def _read_keychain(session, address: str, keychain: str) -> DeviceKeyState:
    try:
        reply = session.query(KEYCHAIN_COMMAND)
        state = build_device_state(address, extract_keychain_fields(reply, keychain, address))
    except DeviceCommandError as exc:
        keyserver_device_operations_total.labels(operation="keychain_status", status="error").inc()
        raise ParseError(f"keychain op command error: {exc.message}", address) from exc
    except (ParseError, ConsistencyError):
        keyserver_device_operations_total.labels(operation="keychain_status", status="error").inc()
        raise
    keyserver_device_operations_total.labels(operation="keychain_status", status="success").inc()
    return state


def poll_device(address: str, config: FleetConfig, connect: SessionFactory = open_session) -> DeviceKeyState:
    """Read the key-chain state of one device, checking NTP first when required."""
    try:
        with connect(address, config) as session:
            keyserver_device_operations_total.labels(operation="connect", status="success").inc()
            if config.ntp_required:
                _check_ntp(session, address)
            state = _read_keychain(session, address, config.keychain)
    except DeviceConnectionError:
        keyserver_device_operations_total.labels(operation="connect", status="error").inc()
        raise

    logger.info(
        "Device key-chain status",
        extra={
            "device": address,
            "active_key": state.active_send_key,
            "ready_for_keys": state.ready_for_keys,
        },
    )
    return state


def summarize_fleet(config: FleetConfig, states: Sequence[DeviceKeyState]) -> FleetVerdict:
    """
    Fold per-device snapshots into a fleet verdict.

    Raises:
        ConsistencyError: If active keys or readiness differ across the fleet
        PartialResponseError: If fewer devices answered than are configured
    """
    active_slots = {state.active_send_key for state in states}
    if len(active_slots) > 1:
        raise ConsistencyError(f"keychains unsynchronized: active keys {sorted(active_slots)}")
    if len(states) != len(config.devices):
        raise PartialResponseError(
            f"didn't get a reply from all devices ({len(states)} of {len(config.devices)})"
        )

    ready = [state.address for state in states if state.ready_for_keys]
    if ready and len(ready) != len(states):
        not_ready = [state.address for state in states if not state.ready_for_keys]
        raise ConsistencyError(f"not all devices ready for new keys: {', '.join(not_ready)} have keys staged")

    return FleetVerdict(
        needs_rotation=bool(ready),
        active_slot=states[0].active_send_key,
        responding_device_count=len(states),
    )


def get_fleet_status(
    config: FleetConfig, connect: SessionFactory = open_session
) -> Tuple[FleetVerdict, List[DeviceKeyState]]:
    """Poll every device and return the fleet verdict with the device snapshots."""
    states = [poll_device(address, config, connect) for address in config.devices]
    verdict = summarize_fleet(config, states)
    logger.info(
        "Fleet key-chain status",
        extra={
            "needs_rotation": verdict.needs_rotation,
            "active_slot": verdict.active_slot,
            "devices": verdict.responding_device_count,
        },
    )
    return verdict, states
