# epubclean/telemetry/logging.py
from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

# ------------------------------- Job context ----------------------------------

_job_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "epubclean_job_id", default=None
)


def get_job_id() -> Optional[str]:
    return _job_id.get()


def set_job_id(job_id: Optional[str]) -> contextvars.Token[Optional[str]]:
    return _job_id.set(job_id)


def reset_job_id(token: contextvars.Token[Optional[str]]) -> None:
    _job_id.reset(token)


# ------------------------------- JSON utilities -------------------------------


def _iso8601(dt: datetime) -> str:
    # Always UTC, explicit trailing 'Z'
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


_JSON_SAFE_PRIMITIVES = (str, int, float, bool, type(None))


def _json_sanitize(value: Any) -> Any:
    """
    Best-effort JSON sanitizer for log payloads:
    - Pass through JSON-safe primitives
    - Convert bytes to utf-8 (errors replaced)
    - Convert datetimes to ISO8601
    - Fallback to str(value)
    """
    if isinstance(value, _JSON_SAFE_PRIMITIVES):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return _iso8601(value)
    if isinstance(value, Mapping):
        return {str(k): _json_sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_sanitize(v) for v in value]
    return str(value)


# ------------------------------ JSON formatter --------------------------------


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter with stable keys. Ensures all fields are
    JSON-serializable and line-oriented.
    """

    # Standard LogRecord attributes to exclude from "extra"
    _std_keys: Tuple[str, ...] = (
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    )

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()

        extra: Dict[str, Any] = {}
        for k, v in record.__dict__.items():
            if k not in self._std_keys and not k.startswith("_"):
                extra[k] = v

        job_id = extra.pop("job_id", None) or get_job_id()

        payload: Dict[str, Any] = {
            "ts": _iso8601(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": message,
        }
        if job_id:
            payload["job_id"] = job_id

        if extra:
            payload.update(_json_sanitize(extra))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class _JobIdFilter(logging.Filter):
    """Expose the current job id to plain-text format strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "job_id"):
            record.job_id = get_job_id() or "-"
        return True


# ------------------------------ Logger helpers --------------------------------

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(job_id)s] %(name)s: %(message)s"

_configured = False


def configure_root_logging(level: int | str = "INFO", json_lines: bool = True) -> None:
    """
    Idempotent root logger setup (JSON or plain text) to stdout. Safe for tests.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()

    resolved_level = (
        level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO)
    )
    root.setLevel(resolved_level)

    # Remove pre-existing handlers to avoid duplicate lines in tests
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stdout)
    if json_lines:
        handler.setFormatter(JsonFormatter())
    else:
        handler.addFilter(_JobIdFilter())
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    root.addHandler(handler)

    _configured = True


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """
    Bind static context (e.g., job_id, component) to a logger, ensuring those
    keys appear on every log line via the 'extra' mechanism.
    """

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        super().__init__(logger, dict(extra or {}))

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        # Merge adapter's context with per-call extra (if any)
        merged_extra: Dict[str, Any] = {}
        call_extra = kwargs.get("extra")
        if isinstance(call_extra, Mapping):
            merged_extra.update(dict(call_extra))
        for k, v in (self.extra or {}).items():
            merged_extra.setdefault(k, v)
        kwargs["extra"] = merged_extra
        return msg, kwargs


def bind(logger: logging.Logger | None = None, **context: Any) -> ContextAdapter:
    """
    Return a LoggerAdapter with bound context.

        log = bind(logging.getLogger(__name__), component="ocf")
        log.info("started")

    If logger is None, the root logger is used.
    """
    base = logger or logging.getLogger()
    return ContextAdapter(base, context)
