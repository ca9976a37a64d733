import json
import sys
import logging

from keyserver.utils.logging_utils import JSONFormatter, redact_sensitive_data, setup_json_logging


def make_record(msg="Updated keychain", extra=None, exc_info=None):
    record = logging.LogRecord("keyserver.test", logging.INFO, __file__, 10, msg, None, exc_info)
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


def test_redact_sensitive_data():
    data = {
        "user": "netops",
        "password": "hunter2",
        "Secret": "abc",
        "nested": {"key": "/etc/keyserver/id_ed25519", "devices": ["r1"]},
        "items": [{"token": "t"}, {"ok": 1}],
    }
    redacted = redact_sensitive_data(data)
    assert redacted["user"] == "netops"
    assert redacted["password"] == "***REDACTED***"
    assert redacted["Secret"] == "***REDACTED***"
    assert redacted["nested"]["key"] == "***REDACTED***"
    assert redacted["nested"]["devices"] == ["r1"]
    assert redacted["items"][0]["token"] == "***REDACTED***"
    assert redacted["items"][1] == {"ok": 1}


def test_json_formatter_fields():
    payload = json.loads(JSONFormatter().format(make_record()))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "keyserver.test"
    assert payload["message"] == "Updated keychain"
    assert payload["timestamp"].endswith("Z")


def test_json_formatter_includes_redacted_extra():
    record = make_record(extra={"device": "r1", "active_slot": 5, "password": "hunter2", "devices": ("r1", "r2")})
    payload = json.loads(JSONFormatter().format(record))
    assert payload["device"] == "r1"
    assert payload["active_slot"] == 5
    assert payload["password"] == "***REDACTED***"
    assert payload["devices"] == ["r1", "r2"]


def test_json_formatter_exception():
    try:
        raise ValueError("bad reply")
    except ValueError:
        record = make_record(exc_info=sys.exc_info())
    payload = json.loads(JSONFormatter().format(record))
    assert "ValueError: bad reply" in payload["exception"]


def test_setup_json_logging_to_file_and_stderr(tmp_path):
    log_file = tmp_path / "keyserver.log"
    root = setup_json_logging("debug", "both", str(log_file))
    try:
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert all(isinstance(h.formatter, JSONFormatter) for h in root.handlers)
        logging.getLogger("keyserver.test").info("Rotation loop started", extra={"devices": 3})
        for handler in root.handlers:
            handler.flush()
        line = json.loads(log_file.read_text().splitlines()[-1])
        assert line["message"] == "Rotation loop started"
        assert line["devices"] == 3
    finally:
        for handler in list(root.handlers):
            handler.close()
        setup_json_logging(logging.INFO, "stdout")


def test_setup_json_logging_stdout_only():
    root = setup_json_logging(logging.WARNING, "stdout")
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0], logging.StreamHandler)
    setup_json_logging(logging.INFO, "stdout")
