"""
Two-phase application of key-chain statements across the fleet.

The probe pass commit-checks the batch on every device before anything is
changed. The apply pass commits device by device in configured order; if a
device fails, the devices already committed are rolled back in the same
order and the failure is raised. Rollback stops at its first failure and is
never retried.
"""
import logging
from typing import List, Sequence

from keyserver.devices.client import SessionFactory, is_benign_apply_quirk, open_session
from keyserver.metrics import keyserver_device_operations_total, keyserver_rotations_total
from keyserver.models.fleet import CommitProgress, FleetConfig
from keyserver.utils.error_handling import (
    ApplyError,
    DeviceCommandError,
    DeviceConnectionError,
    RollbackError,
)

logger = logging.getLogger(__name__)


class FleetCommitter:
    """Applies one statement batch to every device in a fleet."""

    def __init__(self, config: FleetConfig, connect: SessionFactory = open_session):
        self.config = config
        self.connect = connect

    def _run(self, operation: str, address: str, action) -> bool:
        """
        Open a session to *address* and run *action(session)*.

        Returns True when success was inferred from the benign envelope
        mismatch. Any other failure is raised as DeviceConnectionError or
        DeviceCommandError.
        """
        try:
            with self.connect(address, self.config) as session:
                action(session)
        except DeviceCommandError as exc:
            if not is_benign_apply_quirk(exc):
                keyserver_device_operations_total.labels(operation=operation, status="error").inc()
                raise
            keyserver_device_operations_total.labels(operation=operation, status="benign_quirk").inc()
            logger.warning(
                "Device replied with an unexpected envelope; treating as success",
                extra={"device": address, "operation": operation},
            )
            return True
        except DeviceConnectionError:
            keyserver_device_operations_total.labels(operation=operation, status="error").inc()
            raise
        except Exception as exc:
            # transport and parser failures outside PyEZ's RPC errors
            keyserver_device_operations_total.labels(operation=operation, status="error").inc()
            raise DeviceCommandError(f"{type(exc).__name__}: {exc}", address, operation) from exc
        keyserver_device_operations_total.labels(operation=operation, status="success").inc()
        return False

    def probe(self, commands: List[str]) -> None:
        """
        Commit-check *commands* on every device.

        Raises:
            ApplyError: On the first device that rejects the batch
        """
        for address in self.config.devices:
            logger.info("Keychain update check", extra={"device": address})
            try:
                self._run("probe", address, lambda session: session.check_config(commands))
            except (DeviceCommandError, DeviceConnectionError) as exc:
                raise ApplyError(f"commit check failed: {exc.message}", address, stage="probe") from exc

    def apply(self, commands: List[str]) -> CommitProgress:
        """
        Probe, then commit *commands* on every device, rolling back on failure.

        Returns:
            CommitProgress: Devices that committed, in order

        Raises:
            ApplyError: If the probe or apply pass fails
        """
        self.probe(commands)

        progress = CommitProgress()
        for address in self.config.devices:
            logger.info("Keychain update config", extra={"device": address})
            try:
                quirk = self._run("apply", address, lambda session: session.apply_config(commands))
            except (DeviceCommandError, DeviceConnectionError) as exc:
                raise self._rollback_after_failure(address, exc, progress) from exc
            progress.record(address, quirk=quirk)

        keyserver_rotations_total.labels(status="applied").inc()
        return progress

    def _rollback_after_failure(self, address: str, exc, progress: CommitProgress) -> ApplyError:
        """Roll back *progress* and build the error describing both outcomes."""
        logger.error(
            "Keychain update failed; rolling back committed devices",
            extra={"device": address, "error": exc.message, "committed": list(progress.committed)},
        )
        try:
            self.rollback(progress.committed)
        except RollbackError as rollback_exc:
            keyserver_rotations_total.labels(status="rollback_failed").inc()
            return ApplyError(f"commit failed: {exc.message}", address, stage="apply", rollback_error=rollback_exc)
        keyserver_rotations_total.labels(status="rolled_back").inc()
        return ApplyError(f"commit failed: {exc.message}", address, stage="apply", rolled_back=progress.committed)

    def rollback(self, devices: Sequence[str]) -> None:
        """
        Revert the last commit on each of *devices*, in order.

        Raises:
            RollbackError: On the first device that cannot be rolled back
        """
        for address in devices:
            logger.info("Rollback config", extra={"device": address})
            try:
                self._run("rollback", address, lambda session: session.revert_last())
            except (DeviceCommandError, DeviceConnectionError) as exc:
                logger.critical(
                    "Rollback failed; manual intervention required",
                    extra={"device": address, "error": exc.message},
                )
                raise RollbackError(f"rollback failed: {exc.message}", address) from exc
