import json
import logging

from utils.ml_logging import JsonFormatter, PrettyFormatter, get_logger, session_logger


def make_record(**extra):
    record = logging.LogRecord("relay.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_session_id():
    payload = json.loads(JsonFormatter().format(make_record(session_id="abc123")))

    assert payload["message"] == "hello world"
    assert payload["session_id"] == "abc123"
    assert payload["level"] == "INFO"


def test_pretty_formatter_prefixes_session_id():
    assert "[abc123] hello world" in PrettyFormatter().format(make_record(session_id="abc123"))


def test_session_logger_stamps_records(caplog):
    log = session_logger(logging.getLogger("tests.logging"), "s-1")

    with caplog.at_level(logging.INFO, logger="tests.logging"):
        log.info("connected")

    assert caplog.records[-1].session_id == "s-1"


def test_get_logger_reads_level_from_env(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    logger = get_logger("tests.logging.env", include_stream_handler=False)

    assert logger.level == logging.DEBUG
