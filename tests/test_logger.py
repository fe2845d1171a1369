"""
Tests for logging setup.
"""

import io
import json
import logging

from region_rollout.logger import ConsoleFormatter, RolloutLoggerAdapter, StructuredFormatter, setup_logging


def test_structured_formatter_includes_context():
    record = logging.LogRecord("region_rollout.test", logging.INFO, __file__, 10, "applied %s", ("iot",), None)
    record.target = "dev-eu-west-1"
    record.wave = "dev-eu-west-1-core-ingest-wave"

    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "applied iot"
    assert data["level"] == "INFO"
    assert data["target"] == "dev-eu-west-1"
    assert data["wave"] == "dev-eu-west-1-core-ingest-wave"
    assert "group" not in data


def test_console_formatter_appends_context():
    record = logging.LogRecord("region_rollout.test", logging.WARNING, __file__, 10, "halted", (), None)
    record.target = "dev-eu-west-1"
    record.revision = None

    line = ConsoleFormatter().format(record)

    assert line.endswith("region_rollout.test: halted [target=dev-eu-west-1]")
    assert "WARNING" in line


def test_adapter_adds_context(caplog):
    logger = logging.getLogger("region_rollout.adapter")
    adapter = RolloutLoggerAdapter(logger, {"target": "dev-eu-west-1", "revision": "abc"})

    with caplog.at_level(logging.INFO, logger="region_rollout.adapter"):
        adapter.info("starting", extra={"wave": "w1"})

    record = caplog.records[-1]
    assert record.target == "dev-eu-west-1"
    assert record.revision == "abc"
    assert record.wave == "w1"


def test_setup_logging_quiets_third_party():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        setup_logging("DEBUG", structured=False)

        assert root.level == logging.DEBUG
        assert logging.getLogger("botocore").level == logging.WARNING
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)


def test_setup_logging_writes_json_to_stream():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    stream = io.StringIO()
    try:
        setup_logging("info", stream=stream)
        logging.getLogger("region_rollout.stream").info("routing unchanged", extra={"environment": "prod"})

        data = json.loads(stream.getvalue().splitlines()[-1])
        assert data["message"] == "routing unchanged"
        assert data["environment"] == "prod"
        assert data["timestamp"].endswith("Z")
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
