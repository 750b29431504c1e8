# src/site_analytics/logging_utils.py
import logging
from logging.handlers import RotatingFileHandler
import time
from functools import wraps
from pathlib import Path
from datetime import datetime, timezone

_CONFIGURED = False

DEFAULT_LOG_DIR = Path(__file__).resolve().parents[2] / "logs"


def init_logging(
    *,
    reset: bool = False,
    level: int = logging.INFO,
    log_dir: Path | None = None,
    to_file: bool = True,
) -> None:
    """
    Configure the ROOT logger once for the whole app.
    - Writes to stdout AND logs/analytics.log (unless to_file=False)
    - If reset=True, overwrite the log file on this run.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger()
    root.setLevel(level)

    # Clear any pre-existing handlers (e.g., from notebooks/tests)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    if to_file:
        log_dir = log_dir or DEFAULT_LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            log_dir / "analytics.log", mode="w" if reset else "a",
            maxBytes=5_000_000, backupCount=3, encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    # Faker logs every locale lookup at DEBUG
    logging.getLogger("faker").setLevel(logging.WARNING)

    root.info("----- RUN START %s -----", datetime.now(timezone.utc).isoformat())
    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """Grab a namespaced logger."""
    return logging.getLogger(f"analytics.{name}" if name else "analytics")


def log_time(logger=None):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            active_logger = logger or logging.getLogger(func.__module__)
            start = time.perf_counter()
            result = func(*args, **kwargs)
            duration = time.perf_counter() - start
            active_logger.info("%s executed in %.3f seconds", func.__name__, duration)
            return result
        return wrapper
    return decorator
