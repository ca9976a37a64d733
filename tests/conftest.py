"""Global test fixtures and configuration."""

import os
import sys

import pytest

# Make sure the project root is in the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Keep tests away from real config files, log files and AWS
os.environ["KEYSERVER_CONFIG_FILE"] = os.path.join(os.path.dirname(__file__), "missing-config.json")
os.environ["KEYSERVER_LOG_OUTPUT"] = "stdout"
os.environ["KEYSERVER_ROTATION_ENABLED"] = "false"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

from keyserver.devices.parsing import KEYCHAIN_COMMAND, UPTIME_COMMAND
from keyserver.models.fleet import FleetConfig
from keyserver.utils.error_handling import DeviceCommandError, DeviceConnectionError

KEYCHAIN_NAME = "macsec-kc"
DEVICES = ["r1.example.net", "r2.example.net", "r3.example.net"]


def keychain_xml(active_send="5", active_receive=None, next_send="None", next_receive="None",
                 next_time="None", name=KEYCHAIN_NAME, omit=()):
    """Build a `show security keychain` reply for one key-chain."""
    fields = {
        "hakr-keychain-name": name,
        "hakr-keychain-active-send-key": active_send,
        "hakr-keychain-active-receive-key": active_send if active_receive is None else active_receive,
        "hakr-keychain-next-send-key": next_send,
        "hakr-keychain-next-receive-key": next_receive,
        "hakr-keychain-next-key-time": next_time,
    }
    body = "".join(f"<{tag}>{value}</{tag}>" for tag, value in fields.items() if tag not in omit)
    return (
        "<hakr-keychain-information>"
        "<hakr-keychain><hakr-keychain-name>other-kc</hakr-keychain-name>"
        "<hakr-keychain-active-send-key>9</hakr-keychain-active-send-key></hakr-keychain>"
        f"<hakr-keychain>{body}</hakr-keychain>"
        "</hakr-keychain-information>"
    )


def staged_keychain_xml(active="5"):
    return keychain_xml(active, next_send=str(int(active) + 1), next_receive=str(int(active) + 1),
                        next_time="2024-06-02.12:00:00 UTC")


def uptime_xml(source=" NTP CLOCK "):
    return (
        "<system-uptime-information>"
        "<current-time><date-time>2024-06-01 12:00:00 UTC</date-time></current-time>"
        f"<time-source>{source}</time-source>"
        "</system-uptime-information>"
    )


class FakeDevice:
    """Scripted replies and failures for one device address."""

    def __init__(self, keychain=None, uptime=None, connect_error=None, query_error=None,
                 check_error=None, apply_error=None, revert_error=None, fail_connect_after=None,
                 apply_exception=None, revert_exception=None):
        self.keychain = keychain if keychain is not None else keychain_xml()
        self.uptime = uptime if uptime is not None else uptime_xml()
        self.connect_error = connect_error
        self.query_error = query_error
        self.check_error = check_error
        self.apply_error = apply_error
        self.revert_error = revert_error
        self.fail_connect_after = fail_connect_after
        # raised as-is, bypassing the session error types
        self.apply_exception = apply_exception
        self.revert_exception = revert_exception
        self.connects = 0


class FakeSession:
    def __init__(self, fleet, address):
        self.fleet = fleet
        self.address = address
        self.device = fleet.devices[address]

    def __enter__(self):
        if self.device.connect_error:
            raise DeviceConnectionError(self.device.connect_error, self.address)
        self.device.connects += 1
        if self.device.fail_connect_after is not None and self.device.connects > self.device.fail_connect_after:
            raise DeviceConnectionError("connection refused", self.address)
        self.fleet.open_sessions += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self.fleet.open_sessions -= 1

    def query(self, command):
        self.fleet.calls.append(("query", self.address, command))
        if self.device.query_error:
            raise DeviceCommandError(self.device.query_error, self.address, command)
        if command == KEYCHAIN_COMMAND:
            return self.device.keychain
        if command == UPTIME_COMMAND:
            return self.device.uptime
        raise DeviceCommandError(f"unknown command {command}", self.address, command)

    def check_config(self, statements):
        self.fleet.calls.append(("probe", self.address))
        self.fleet.batches.append(list(statements))
        if self.device.check_error:
            raise DeviceCommandError(self.device.check_error, self.address, "commit check")

    def apply_config(self, statements):
        self.fleet.calls.append(("apply", self.address))
        if self.device.apply_exception:
            raise self.device.apply_exception
        if self.device.apply_error:
            raise DeviceCommandError(self.device.apply_error, self.address, "commit")

    def revert_last(self):
        self.fleet.calls.append(("rollback", self.address))
        if self.device.revert_exception:
            raise self.device.revert_exception
        if self.device.revert_error:
            raise DeviceCommandError(self.device.revert_error, self.address, "rollback 1")


class FakeFleet:
    """Session factory over FakeDevices, recording every device call in order."""

    def __init__(self, devices):
        self.devices = devices
        self.calls = []
        self.batches = []
        self.open_sessions = 0

    def connect(self, address, config):
        return FakeSession(self, address)

    def calls_for(self, operation):
        return [call[1] for call in self.calls if call[0] == operation]


@pytest.fixture
def fleet_config():
    """Three-device fleet without NTP enforcement."""
    return FleetConfig(
        user="netops",
        private_key_file="/etc/keyserver/id_ed25519",
        interval_hours=24,
        keychain=KEYCHAIN_NAME,
        ntp_required=False,
        devices=DEVICES,
    )


@pytest.fixture
def ntp_fleet_config(fleet_config):
    return fleet_config.model_copy(update={"ntp_required": True})


@pytest.fixture
def fake_device():
    """The FakeDevice class, for building scripted devices."""
    return FakeDevice


@pytest.fixture
def make_fleet():
    """Build a FakeFleet; devices not given explicitly are ready with active key 5."""
    def _make(**overrides):
        devices = {address: FakeDevice() for address in DEVICES}
        for index, device in overrides.items():
            devices[DEVICES[int(index.lstrip("r")) - 1]] = device
        return FakeFleet(devices)
    return _make


@pytest.fixture
def xml():
    """Reply builders for device XML."""
    class Builders:
        keychain = staticmethod(keychain_xml)
        staged_keychain = staticmethod(staged_keychain_xml)
        uptime = staticmethod(uptime_xml)
    return Builders
