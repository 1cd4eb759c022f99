from __future__ import annotations

import io
import json
import logging

import pytest

from chartsync.common.logging import JsonLogFormatter, init_structured_logging, log_event


def _capture(name: str) -> tuple[logging.Logger, io.StringIO]:
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    handler.setFormatter(JsonLogFormatter(service="chartsync-test", env="test"))
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, buf


def test_log_event_emits_one_json_object_with_fields():
    logger, buf = _capture("chartsync.test.events")

    log_event(logger, "sync.write_dropped", severity="ERROR", label="save_layout:L1", attempts=5)

    payload = json.loads(buf.getvalue().strip())
    assert payload["event_type"] == "sync.write_dropped"
    assert payload["severity"] == "ERROR"
    assert payload["service"] == "chartsync-test"
    assert payload["env"] == "test"
    assert payload["label"] == "save_layout:L1"
    assert payload["attempts"] == 5
    assert payload["logger"] == "chartsync.test.events"


def test_plain_records_get_default_event_type_and_exception():
    logger, buf = _capture("chartsync.test.plain")

    try:
        raise RuntimeError("boom\nsecond line")
    except RuntimeError:
        logger.exception("repository: failed to load layouts uid=%s", "u1")

    payload = json.loads(buf.getvalue().strip())
    assert payload["event_type"] == "log"
    assert payload["message"] == "repository: failed to load layouts uid=u1"
    assert "RuntimeError: boom" in payload["exception"]


def test_init_structured_logging_writes_json_to_stdout(capsys: pytest.CaptureFixture[str]):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        init_structured_logging(service="svc", env="dev", level="INFO")
        log_event(logging.getLogger("chartsync.test.root"), "session.opened", uid="u1")
        log_event(logging.getLogger("chartsync.test.root"), "sync.drained", severity="DEBUG", applied=1)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
        logging.captureWarnings(False)

    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["service"] == "svc"
    assert payload["event_type"] == "session.opened"
    assert payload["uid"] == "u1"
