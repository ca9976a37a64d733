import pytest
from datetime import datetime, timedelta
from unittest import mock

from pydantic import SecretStr

from keyserver.models.fleet import ACTIVATION_TIME_FORMAT, RING_SIZE, SECRET_BYTES
from keyserver.rotation import generator
from keyserver.rotation.generator import activation_schedule, generate_key_ring
from keyserver.utils.error_handling import GenerationError

NOW = datetime(2024, 6, 1, 12, 0, 0)


def test_ring_has_fixed_size():
    ring = generate_key_ring(5, 24, now=NOW)
    assert len(ring) == RING_SIZE == 31
    assert len(ring.secrets) == len(ring.names) == len(ring.activation_times) == 31
    assert ring.active_slot == 5


def test_secrets_and_names_are_hex_and_distinct():
    ring = generate_key_ring(0, 24, now=NOW)
    secrets = [s.get_secret_value() for s in ring.secrets]
    for value in secrets + ring.names:
        assert len(value) == SECRET_BYTES * 2
        int(value, 16)
    assert len(set(secrets)) == RING_SIZE
    assert len(set(ring.names)) == RING_SIZE
    assert not set(secrets) & set(ring.names)


def test_secrets_are_not_exposed_in_repr_or_dump():
    ring = generate_key_ring(0, 24, now=NOW)
    secret = ring.secrets[0].get_secret_value()
    assert isinstance(ring.secrets[0], SecretStr)
    assert secret not in repr(ring)
    assert secret not in ring.model_dump_json()


def test_activation_schedule_starts_one_interval_out():
    times = activation_schedule(24, now=NOW)
    assert times[0] == "2024-06-02.12:00:00"
    assert times[1] == "2024-06-03.12:00:00"
    assert times[-1] == (NOW + timedelta(hours=24 * 31)).strftime(ACTIVATION_TIME_FORMAT)


@pytest.mark.parametrize("interval", [1, 6, 24, 168])
def test_activation_times_strictly_increase(interval):
    ring = generate_key_ring(3, interval, now=NOW)
    parsed = [datetime.strptime(t, ACTIVATION_TIME_FORMAT) for t in ring.activation_times]
    assert all(later - earlier == timedelta(hours=interval) for earlier, later in zip(parsed, parsed[1:]))
    assert parsed[0] - NOW == timedelta(hours=interval)


@pytest.mark.parametrize("interval", [0, -24])
def test_invalid_interval(interval):
    with pytest.raises(GenerationError):
        generate_key_ring(0, interval, now=NOW)


def test_random_source_failure_aborts():
    with mock.patch.object(generator.secrets, "token_bytes", side_effect=OSError("no entropy")):
        with pytest.raises(GenerationError, match="random source unavailable"):
            generate_key_ring(0, 24, now=NOW)


def test_default_now_is_local_time():
    before = datetime.now()
    ring = generate_key_ring(0, 1)
    first = datetime.strptime(ring.activation_times[0], ACTIVATION_TIME_FORMAT)
    assert before + timedelta(hours=1) - timedelta(seconds=1) <= first <= datetime.now() + timedelta(hours=1)
