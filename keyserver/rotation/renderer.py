"""Rendering of a key ring into Junos key-chain set statements."""

import logging
from typing import List

from keyserver.models.fleet import RING_SIZE, SLOT_COUNT, KeyRing
from keyserver.utils.error_handling import RenderError

logger = logging.getLogger(__name__)

STATEMENT_TEMPLATE = "set security authentication-key-chains key-chain {keychain} key {slot} {attribute} {value}"


def slot_for_position(position: int, active_slot: int) -> int:
    """
    Map a ring position to a key-chain slot, skipping the active slot.

    Positions below the active slot keep their number; the rest shift up
    by one, so positions 0..RING_SIZE-1 cover every slot but the active one.
    """
    return position if position < active_slot else position + 1


def render_commands(ring: KeyRing, active_slot: int, keychain: str) -> List[str]:
    """
    Render *ring* into set statements for every slot except *active_slot*.

    Raises:
        RenderError: If the ring, slot or key-chain name cannot be rendered
    """
    if not 0 <= active_slot < SLOT_COUNT:
        raise RenderError(f"active slot {active_slot} is outside 0..{SLOT_COUNT - 1}")
    if len(ring) != RING_SIZE:
        raise RenderError(f"key ring has {len(ring)} entries, expected {RING_SIZE}")
    if not keychain or any(ch.isspace() for ch in keychain):
        raise RenderError(f"invalid key-chain name {keychain!r}")

    commands = []
    for position in range(RING_SIZE):
        slot = slot_for_position(position, active_slot)
        attributes = (
            ("secret", ring.secrets[position].get_secret_value()),
            ("key-name", ring.names[position]),
            ("start-time", ring.activation_times[position]),
        )
        for attribute, value in attributes:
            line = STATEMENT_TEMPLATE.format(keychain=keychain, slot=slot, attribute=attribute, value=value).strip()
            if value and line:
                commands.append(line)

    logger.info("Rendered key-chain statements", extra={"active_slot": active_slot, "statements": len(commands)})
    return commands
