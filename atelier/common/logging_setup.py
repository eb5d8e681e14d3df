import logging
import sys
import json
import re
from typing import Any, Dict, Optional
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from atelier.config.settings import config_settings
from atelier.common.constants import request_id_ctx

SENSITIVE_PATTERNS = [
    "password", "secret", "token", "authorization",
    "api_key", "access_token", "session_key", "pwd_hash",
]

_STD_RECORD_FIELDS = (
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
)


def sanitize_message_text(msg: str) -> str:
    """Redact sensitive ``key=value`` / ``"key": "value"`` pairs inside a message (best-effort)."""
    out = msg
    for p in SENSITIVE_PATTERNS:
        out = re.sub(rf'("{p}"\s*:\s*")[^"]+(")', r'\1[REDACTED]\2', out, flags=re.IGNORECASE)
        out = re.sub(rf'({p}\s*[=:]\s*)[\w\-\./]+', r'\1[REDACTED]', out, flags=re.IGNORECASE)
    return out


def _mask(value: Any) -> str:
    val = str(value)
    if len(val) > 12:
        return val[:6] + "..." + val[-4:]
    return val[:3] + "..."


class JSONFormatter(logging.Formatter):
    """Structured JSON formatter for non-dev environments"""

    def __init__(self, env: str, service: str):
        super().__init__()
        self.env = env
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_message_text(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "env": self.env,
            "service": self.service,
        }

        rid = request_id_ctx.get()
        if rid:
            log_data["request_id"] = rid

        extra_fields = {}
        for k, v in record.__dict__.items():
            if k in _STD_RECORD_FIELDS or k.startswith("_"):
                continue
            extra_fields[k] = v

        # identifiers are partially masked, secrets dropped entirely
        for field in ("email", "session_key"):
            if field in extra_fields and extra_fields[field] is not None:
                extra_fields[field] = _mask(extra_fields[field])
        for field in ("password", "token", "access_token"):
            if field in extra_fields:
                extra_fields[field] = "[REDACTED]"
        log_data.update(extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SecurityFilter(logging.Filter):
    """Redact obvious secrets in the rendered message before any handler sees it"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_message_text(record.getMessage())
        record.args = ()
        return True


_queue_listener: Optional[QueueListener] = None


def setup_logging(env: Optional[str] = None, service: Optional[str] = None):
    """Install a non-blocking queue based root logger. Call once per app lifespan."""
    global _queue_listener

    env = (env or config_settings.ENV).lower()
    service = service or config_settings.SERVICE_NAME

    log_level = logging.INFO if env in ("prod", "staging") else logging.DEBUG

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    q: Queue = Queue(-1)
    qh = QueueHandler(q)

    console_handler = logging.StreamHandler(sys.stdout)
    if env != "dev":
        console_handler.setFormatter(JSONFormatter(env, service))
        console_handler.addFilter(SecurityFilter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root.setLevel(log_level)
    root.addHandler(qh)

    _queue_listener = QueueListener(q, console_handler, respect_handler_level=True)
    _queue_listener.start()

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if env != "dev" else logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger(f"{service}.app")


def shutdown_logging():
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger:
    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _merge(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        extra = dict(kwargs.pop("extra", None) or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        kwargs["extra"] = extra
        return kwargs

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(msg, *args, **self._merge(kwargs))

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(msg, *args, **self._merge(kwargs))

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(msg, *args, **self._merge(kwargs))

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(msg, *args, **self._merge(kwargs))

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(msg, *args, **self._merge(kwargs))


def get_logger(name: str = "atelier.app") -> ContextLogger:
    return ContextLogger(name)
