import json
import logging

from epubclean.telemetry.logging import (
    JsonFormatter,
    bind,
    get_job_id,
    reset_job_id,
    set_job_id,
)


def _record(msg="hello", **extra):
    rec = logging.LogRecord("epubclean.test", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_formatter_includes_job_id_from_context():
    token = set_job_id("job_42")
    try:
        payload = json.loads(JsonFormatter().format(_record()))
    finally:
        reset_job_id(token)
    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "epubclean.test"
    assert payload["job_id"] == "job_42"
    assert payload["ts"].endswith("Z")
    assert get_job_id() is None


def test_json_formatter_sanitizes_extra_fields():
    payload = json.loads(JsonFormatter().format(_record(stage="unpack", blob=b"\xffok")))
    assert payload["stage"] == "unpack"
    assert payload["blob"].endswith("ok")
    assert "job_id" not in payload


def test_bind_merges_static_context(caplog):
    log = bind(logging.getLogger("epubclean.test.bind"), component="ocf")
    with caplog.at_level(logging.INFO, logger="epubclean.test.bind"):
        log.info("packed", extra={"entries": 3})
    rec = caplog.records[-1]
    assert rec.component == "ocf"
    assert rec.entries == 3
