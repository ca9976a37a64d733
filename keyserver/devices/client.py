"""Junos device sessions for the keyserver.

Wraps a PyEZ ``Device`` so the rotation code only deals with three things:
operational queries returning XML, configuration batches (check, commit,
revert) and one exception hierarchy. PyEZ errors never leak past this
module; they are re-raised as ``DeviceConnectionError`` or
``DeviceCommandError`` carrying the device address.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from jnpr.junos import Device
from jnpr.junos.exception import ConnectError, RpcError
from jnpr.junos.utils.config import Config
from lxml import etree

from keyserver.models.fleet import FleetConfig
from keyserver.utils.error_handling import DeviceCommandError, DeviceConnectionError

logger = logging.getLogger(__name__)

__all__ = [
    "DeviceSession",
    "SessionFactory",
    "open_session",
    "is_benign_apply_quirk",
    "BENIGN_ENVELOPE_MISMATCH",
]

# Some Junos releases answer a successful commit with a bare <ok/> instead of
# <commit-results>. Go NETCONF clients report that as this error; PyEZ does
# not emit this text today. It is matched so a client that does still
# counts the commit as applied.
BENIGN_ENVELOPE_MISMATCH = "expected element type <commit-results> but have <ok>"

COMMIT_COMMENT = "keyserver key-chain rotation"
ROLLBACK_COMMENT = "keyserver rollback"
DEFAULT_RPC_TIMEOUT = 60


def _rpc_error_message(exc: Exception) -> str:
    """
    Describe a PyEZ failure for logs and reports.

    RpcError's str() includes the rejected configuration element, which may
    be key material, so only its error message is used.
    """
    if isinstance(exc, RpcError):
        return getattr(exc, "message", None) or type(exc).__name__
    return str(exc)


def is_benign_apply_quirk(error: BaseException) -> bool:
    """
    Return True if *error* is the reply-envelope mismatch that still means success.

    The text is searched in *error* and its ``__cause__`` chain, so wrapped
    errors are recognised too.
    """
    while error is not None:
        if BENIGN_ENVELOPE_MISMATCH in str(error):
            return True
        error = error.__cause__
    return False


class DeviceSession:
    """One NETCONF session to one device. Use as a context manager."""

    def __init__(self, address: str, config: FleetConfig, *, timeout: int = DEFAULT_RPC_TIMEOUT) -> None:
        self.address = address
        self.timeout = timeout
        self.device = Device(
            host=address,
            user=config.user,
            passwd=config.password.get_secret_value() if config.password else None,
            ssh_private_key_file=config.private_key_file,
            port=config.port,
            gather_facts=False,
        )

    # ---------------------- context manager helpers ------------------------
    def __enter__(self) -> "DeviceSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def open(self) -> "DeviceSession":
        try:
            self.device.open()
        except ConnectError as exc:
            raise DeviceConnectionError(f"connection failed: {exc}", self.address) from exc
        self.device.timeout = self.timeout
        logger.debug("Session opened", extra={"device": self.address})
        return self

    def close(self) -> None:
        if self.device.connected:
            self.device.close()
            logger.debug("Session closed", extra={"device": self.address})

    # ---------------------- operational commands ---------------------------
    def query(self, command: str) -> etree._Element:
        """Run an operational command and return the XML reply."""
        try:
            return self.device.rpc.cli(command, format="xml")
        except (RpcError, ConnectError) as exc:
            raise DeviceCommandError(_rpc_error_message(exc), self.address, command) from exc

    # ---------------------- configuration batches --------------------------
    def check_config(self, statements: List[str]) -> None:
        """Commit-check *statements* in a private candidate that is discarded afterwards."""
        try:
            with Config(self.device, mode="private") as cu:
                cu.load("\n".join(statements), format="set")
                cu.commit_check()
        except (RpcError, ConnectError) as exc:
            raise DeviceCommandError(_rpc_error_message(exc), self.address, "commit check") from exc

    def apply_config(self, statements: List[str], comment: str = COMMIT_COMMENT) -> None:
        """Load *statements* (set statements always merge) and commit."""
        try:
            with Config(self.device, mode="exclusive") as cu:
                cu.load("\n".join(statements), format="set")
                cu.commit(comment=comment)
        except (RpcError, ConnectError) as exc:
            raise DeviceCommandError(_rpc_error_message(exc), self.address, "commit") from exc

    def revert_last(self, comment: str = ROLLBACK_COMMENT) -> None:
        """Roll back to the previous committed configuration and commit."""
        try:
            with Config(self.device, mode="exclusive") as cu:
                cu.rollback(rb_id=1)
                cu.commit(comment=comment)
        except (RpcError, ConnectError) as exc:
            raise DeviceCommandError(_rpc_error_message(exc), self.address, "rollback 1") from exc


SessionFactory = Callable[[str, FleetConfig], DeviceSession]


def open_session(address: str, config: FleetConfig, timeout: Optional[int] = None) -> DeviceSession:
    """Create an unopened session; enter it with ``with`` to connect."""
    return DeviceSession(address, config, timeout=timeout or DEFAULT_RPC_TIMEOUT)
