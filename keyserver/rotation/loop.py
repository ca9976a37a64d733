"""
Rotation loop: one status/generate/render/apply cycle, then a fixed pause.

Each cycle records exactly one outcome on its sink:
- ERROR (0.0): status could not be trusted, or the apply pass failed
- WARNING (0.5): partial fleet response, or generation/rendering failed
- SUCCESS (1.0): nothing to do, or the rotation was applied everywhere
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from keyserver.devices.client import SessionFactory, open_session
from keyserver.metrics import keyserver_cycle_duration_seconds, keyserver_result
from keyserver.models.fleet import CycleOutcome, CycleReport, CycleStage, FleetConfig, FleetVerdict
from keyserver.rotation.aggregator import get_fleet_status
from keyserver.rotation.committer import FleetCommitter
from keyserver.rotation.generator import generate_key_ring
from keyserver.rotation.renderer import render_commands
from keyserver.utils.error_handling import (
    ApplyError,
    ErrorCollector,
    GenerationError,
    KeyserverError,
    PartialResponseError,
    RenderError,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SECONDS = 24 * 60 * 60

WARNING_ERRORS = (PartialResponseError, GenerationError, RenderError)


def outcome_for_error(error: BaseException) -> CycleOutcome:
    """Map a cycle failure to the outcome it is reported as."""
    if isinstance(error, WARNING_ERRORS):
        return CycleOutcome.WARNING
    return CycleOutcome.ERROR


class OutcomeSink(Protocol):
    def record_outcome(self, value: float) -> None:
        ...


class PrometheusOutcomeSink:
    """Writes cycle outcomes to the keyserver_result gauge."""

    def __init__(self, gauge=keyserver_result):
        self.gauge = gauge

    def record_outcome(self, value: float) -> None:
        self.gauge.set(value)


class MemoryOutcomeSink:
    """Keeps every recorded outcome; used by one-shot runs and tests."""

    def __init__(self):
        self.values: List[float] = []

    @property
    def last(self) -> Optional[float]:
        return self.values[-1] if self.values else None

    def record_outcome(self, value: float) -> None:
        self.values.append(value)


class RotationLoop:
    """Runs rotation cycles for one fleet until stopped."""

    def __init__(
        self,
        config: FleetConfig,
        sink: OutcomeSink,
        *,
        period_seconds: float = DEFAULT_PERIOD_SECONDS,
        connect: SessionFactory = open_session,
    ):
        self.config = config
        self.sink = sink
        self.period_seconds = period_seconds
        self.connect = connect
        self.committer = FleetCommitter(config, connect)
        self.last_report: Optional[CycleReport] = None
        self._stop = asyncio.Event()

    def _rotate(self, verdict: FleetVerdict, progress: dict) -> None:
        progress["stage"] = CycleStage.GENERATE
        ring = generate_key_ring(verdict.active_slot, self.config.interval_hours)
        progress["stage"] = CycleStage.RENDER
        commands = render_commands(ring, verdict.active_slot, self.config.keychain)
        progress["stage"] = CycleStage.APPLY
        committed = self.committer.apply(commands)
        logger.info(
            "Updated keychain",
            extra={"active_slot": verdict.active_slot, "devices": committed.committed, "quirks": committed.quirks},
        )

    def run_cycle(self) -> CycleReport:
        """Run one full cycle and record its outcome."""
        started_at = datetime.now(timezone.utc)
        progress = {"stage": CycleStage.STATUS}
        collector = ErrorCollector()
        verdict = None
        rotated = False

        try:
            with keyserver_cycle_duration_seconds.time():
                verdict, _ = get_fleet_status(self.config, self.connect)
                if verdict.needs_rotation:
                    self._rotate(verdict, progress)
                    rotated = True
            progress["stage"] = CycleStage.DONE
            outcome = CycleOutcome.SUCCESS
            message = "updated keychain" if rotated else "no rotation needed"
        except KeyserverError as exc:
            outcome = outcome_for_error(exc)
            message = str(exc)
            collector.add_error(exc, progress["stage"].value)
            if isinstance(exc, ApplyError) and exc.rollback_error is not None:
                collector.add_error(exc.rollback_error, progress["stage"].value)
            log = logger.warning if outcome is CycleOutcome.WARNING else logger.error
            log(
                "Rotation cycle failed",
                extra={"stage": progress["stage"].value, "device": exc.device, "error": message, "error_type": type(exc).__name__},
            )
        except Exception as exc:
            outcome = CycleOutcome.ERROR
            message = f"unexpected error: {exc}"
            collector.add_error(KeyserverError(message), progress["stage"].value)
            logger.exception("Rotation cycle crashed", extra={"stage": progress["stage"].value})

        self.sink.record_outcome(outcome.value)
        report = CycleReport(
            outcome=outcome,
            stage=progress["stage"],
            message=message,
            rotated=rotated,
            active_slot=verdict.active_slot if verdict else None,
            responding_device_count=verdict.responding_device_count if verdict else 0,
            errors=collector.get_errors(),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        self.last_report = report
        return report

    async def run(self) -> None:
        """Run cycles until `stop()` is called; a running cycle always completes."""
        logger.info("Rotation loop started", extra={"period_seconds": self.period_seconds, "devices": len(self.config.devices)})
        while not self._stop.is_set():
            await asyncio.to_thread(self.run_cycle)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.period_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("Rotation loop stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
