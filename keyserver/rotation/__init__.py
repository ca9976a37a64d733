"""Rotation orchestration: status, generation, rendering, commit and the loop."""

from keyserver.rotation.aggregator import get_fleet_status, poll_device, summarize_fleet
from keyserver.rotation.committer import FleetCommitter
from keyserver.rotation.generator import generate_key_ring
from keyserver.rotation.loop import (
    MemoryOutcomeSink,
    OutcomeSink,
    PrometheusOutcomeSink,
    RotationLoop,
    outcome_for_error,
)
from keyserver.rotation.renderer import render_commands, slot_for_position

__all__ = [
    "get_fleet_status",
    "poll_device",
    "summarize_fleet",
    "FleetCommitter",
    "generate_key_ring",
    "render_commands",
    "slot_for_position",
    "MemoryOutcomeSink",
    "OutcomeSink",
    "PrometheusOutcomeSink",
    "RotationLoop",
    "outcome_for_error",
]
