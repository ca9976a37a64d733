"""
Key material generation for one rotation cycle.

- Draws RING_SIZE secrets and RING_SIZE key names from the OS CSPRNG
- Schedules activations one interval apart, the first one interval from now
- Never falls back to a weaker random source

Security:
- Never log or print key material
- Secrets are held as SecretStr so they stay out of reprs and dumps
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import SecretStr

from keyserver.models.fleet import ACTIVATION_TIME_FORMAT, RING_SIZE, SECRET_BYTES, KeyRing
from keyserver.utils.error_handling import GenerationError

logger = logging.getLogger(__name__)


def _random_hex(nbytes: int = SECRET_BYTES) -> str:
    try:
        return secrets.token_bytes(nbytes).hex()
    except (OSError, NotImplementedError) as exc:
        raise GenerationError(f"random source unavailable: {exc}") from exc


def activation_schedule(interval_hours: int, now: Optional[datetime] = None, size: int = RING_SIZE) -> List[str]:
    """Activation times `now + interval + i*interval` hours for i in 0..size-1."""
    if interval_hours <= 0:
        raise GenerationError(f"interval must be positive, got {interval_hours}")
    now = now or datetime.now()
    initial = now + timedelta(hours=interval_hours)
    return [
        (initial + timedelta(hours=i * interval_hours)).strftime(ACTIVATION_TIME_FORMAT)
        for i in range(size)
    ]


def generate_key_ring(active_slot: int, interval_hours: int, now: Optional[datetime] = None) -> KeyRing:
    """
    Generate a fresh ring of key material.

    Args:
        active_slot: Slot currently active on the fleet
        interval_hours: Hours between consecutive activations
        now: Reference time for the schedule (defaults to local now)

    Returns:
        KeyRing: RING_SIZE secrets, names and activation times

    Raises:
        GenerationError: If randomness cannot be obtained or the interval is invalid
    """
    times = activation_schedule(interval_hours, now)
    ring_secrets = []
    names = []
    for _ in range(RING_SIZE):
        ring_secrets.append(SecretStr(_random_hex()))
        names.append(_random_hex())

    ring = KeyRing(active_slot=active_slot, secrets=ring_secrets, names=names, activation_times=times)
    logger.info(
        "Generated key ring",
        extra={"active_slot": active_slot, "entries": len(ring), "first_activation": times[0], "last_activation": times[-1]},
    )
    return ring
