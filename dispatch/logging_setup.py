import json, logging, os, sys, time, socket
from logging.handlers import RotatingFileHandler

_RESERVED = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
    "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
    "threadName", "taskName",
}

# keys whose values must never reach a log sink
_SECRET_KEYS = {"access_token", "authorization", "api_key"}


# ---------- Formatters ----------
class JsonFormatter(logging.Formatter):
    """One JSON object per line; merges `extra=` fields and static context."""
    def __init__(self, *, extra_static=None):
        super().__init__()
        self.extra_static = extra_static or {}

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": time.strftime('%Y-%m-%dT%H:%M:%S', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "task": getattr(record, "taskName", None),
            "file": record.filename,
            "line": record.lineno,
        }
        for k, v in record.__dict__.items():
            if k in doc or k in _RESERVED or k.startswith("_"):
                continue
            doc[k] = "***" if k.lower() in _SECRET_KEYS else v

        doc.update(self.extra_static)

        if record.exc_info:
            doc["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Single-line format for log files."""
    def __init__(self):
        super().__init__("%(asctime)s [%(levelname)-8.8s] "
                         "[%(filename)s:%(lineno)d] %(message)s")


# ---------- Utilities ----------
def _detect_environment() -> str:
    env = os.getenv("APP_ENV")
    if env:
        return env
    hostname = socket.gethostname().casefold()
    if hostname.startswith("prd"):
        return "Production"
    if hostname.startswith("tst"):
        return "Test"
    return "Development"


def _parse_level(val: str | int | None, default="INFO") -> int:
    if isinstance(val, int):
        return val
    s = (val or os.getenv("LOG_LEVEL", default)).upper()
    return getattr(logging, s, logging.INFO)


def setup_logging(
    *,
    app: str,
    environment: str | None = None,
    level: str | int | None = None,
    use_stream: bool = True,
    stream_json: bool = True,
    filename: str | None = None,
    rolling_max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
    file_json: bool = False,
    extra_static: dict | None = None,
) -> logging.Logger:
    """
    JSON stdout + optional rotating file. Call once at process start;
    calling again replaces the handlers instead of stacking them.
    """
    lvl = _parse_level(level)
    extra_static = {
        "app": app,
        "env": environment or _detect_environment(),
        "host": socket.gethostname(),
        **(extra_static or {}),
    }

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(lvl)

    if use_stream:
        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(lvl)
        sh.setFormatter(JsonFormatter(extra_static=extra_static) if stream_json else TextFormatter())
        root.addHandler(sh)

    if filename:
        d = os.path.dirname(filename)
        if d:
            os.makedirs(d, exist_ok=True)
        fh = RotatingFileHandler(filename=filename, maxBytes=rolling_max_bytes, backupCount=backup_count)
        fh.setLevel(lvl)
        fh.setFormatter(JsonFormatter(extra_static=extra_static) if file_json else TextFormatter())
        root.addHandler(fh)

    # quiet chatty transport loggers unless we are debugging
    if lvl > logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    return root
