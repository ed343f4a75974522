"""JSON log formatting and session id stamping."""

import io
import json
import logging

from focustutor.logging_config import JSONFormatter, SessionIdFilter, set_session_id


def _record(msg="verdict %s", args=("block",)):
    return logging.LogRecord("focustutor.moderation", logging.INFO, __file__, 1, msg, args, None)


def test_formats_single_line_json():
    payload = json.loads(JSONFormatter().format(_record()))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "focustutor.moderation"
    assert payload["msg"] == "verdict block"
    assert "session_id" not in payload


def test_filter_stamps_session_id():
    record = _record()
    set_session_id("abc123")
    try:
        assert SessionIdFilter().filter(record) is True
    finally:
        set_session_id(None)
    assert record.session_id == "abc123"
    assert json.loads(JSONFormatter().format(record))["session_id"] == "abc123"


def test_filter_keeps_explicit_session_id():
    record = _record()
    record.session_id = "from-extra"
    set_session_id("abc123")
    try:
        SessionIdFilter().filter(record)
    finally:
        set_session_id(None)
    assert record.session_id == "from-extra"


def test_handler_output_carries_session_id():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SessionIdFilter())
    handler.setFormatter(JSONFormatter())
    logger = logging.getLogger("focustutor.tests.logging")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    set_session_id("s-42")
    try:
        logger.info("allowed")
    finally:
        set_session_id(None)
        logger.removeHandler(handler)

    payload = json.loads(stream.getvalue())
    assert payload["msg"] == "allowed"
    assert payload["session_id"] == "s-42"
