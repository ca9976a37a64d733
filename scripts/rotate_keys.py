"""
One-shot key-chain rotation for the configured fleet.

- status:  poll every device and report whether a rotation is due
- preview: generate and render a ring without touching devices (no key material shown)
- rotate:  run one full rotation cycle, as the service loop would

Usage:
    python scripts/rotate_keys.py [status|preview|rotate]

Exit status is 0 on success, 1 on warning or error, 2 on bad usage or configuration.
"""
import sys

from keyserver.models.fleet import CycleOutcome
from keyserver.rotation.aggregator import get_fleet_status
from keyserver.rotation.generator import generate_key_ring
from keyserver.rotation.loop import MemoryOutcomeSink, RotationLoop
from keyserver.rotation.renderer import render_commands, slot_for_position
from keyserver.utils.config import get_settings
from keyserver.utils.error_handling import KeyserverError

USAGE = "Usage: python scripts/rotate_keys.py [status|preview|rotate]"


def show_status(fleet) -> int:
    try:
        verdict, states = get_fleet_status(fleet)
    except KeyserverError as e:
        print(f"[ERROR] {e}")
        return 1
    for state in states:
        staged = "ready" if state.ready_for_keys else f"next key {state.next_send_key} at {state.next_key_time}"
        print(f"{state.address}: active key {state.active_send_key}, {staged}")
    if verdict.needs_rotation:
        print(f"[INFO] All {verdict.responding_device_count} devices ready. Rotation due (active slot {verdict.active_slot}).")
    else:
        print(f"[OK] Keys staged on all devices (active slot {verdict.active_slot}). No rotation needed.")
    return 0


def show_preview(fleet, active_slot: int = 0) -> int:
    try:
        ring = generate_key_ring(active_slot, fleet.interval_hours)
        commands = render_commands(ring, active_slot, fleet.keychain)
    except KeyserverError as e:
        print(f"[WARNING] {e}")
        return 1
    for position, activation in enumerate(ring.activation_times):
        print(f"key {slot_for_position(position, active_slot):>2} activates {activation}")
    print(f"[OK] {len(commands)} statements rendered for key-chain {fleet.keychain}")
    return 0


def rotate(fleet) -> int:
    sink = MemoryOutcomeSink()
    report = RotationLoop(fleet, sink).run_cycle()
    if report.outcome is CycleOutcome.SUCCESS:
        print(f"[SUCCESS] {report.message}")
        return 0
    label = "WARNING" if report.outcome is CycleOutcome.WARNING else "ERROR"
    print(f"[{label}] {report.stage.value}: {report.message}")
    return 1


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "status"
    if command not in ("status", "preview", "rotate"):
        print(USAGE)
        return 2

    try:
        fleet = get_settings().fleet_config()
    except ValueError as e:
        print(f"[ERROR] Configuration: {e}")
        return 2

    if command == "status":
        return show_status(fleet)
    if command == "preview":
        return show_preview(fleet)
    return rotate(fleet)


if __name__ == "__main__":
    sys.exit(main())
