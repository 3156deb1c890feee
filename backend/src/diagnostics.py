"""Diagnostics — faulthandler, structured logging, crash dumps.

Everything lands under ~/.shiftglitch:

    logs/glitch.log          JSON lines, rotated at 10 MB, 7 backups
    logs/glitch_fault.log    faulthandler output (C-level crashes)
    crash_reports/*.json     PII-stripped dumps of unhandled exceptions
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import traceback
from pathlib import Path

from security import strip_pii

logger = logging.getLogger(__name__)

APP_DIR_NAME = ".shiftglitch"
LOG_FILE_NAME = "glitch.log"
FAULT_FILE_NAME = "glitch_fault.log"

MAX_LOG_BYTES = 10_000_000
LOG_BACKUP_COUNT = 7
MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7


def app_home() -> str:
    return os.path.join(os.path.expanduser("~"), APP_DIR_NAME)


def _validate_log_dir(env_dir: str) -> str:
    """Validate APP_LOG_DIR is under ~/.shiftglitch. Returns safe path."""
    default = os.path.join(app_home(), "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(app_home())
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside allowed prefix, using default")
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _cleanup_old_logs(log_dir: str):
    cutoff = datetime.datetime.now() - datetime.timedelta(days=MAX_LOG_AGE_DAYS)
    try:
        for f in Path(log_dir).glob(f"{LOG_FILE_NAME}*"):
            if f.stat().st_mtime < cutoff.timestamp():
                f.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Log cleanup failed: %s", e)


def _cleanup_old_crash_reports(crash_dir: str):
    """Keep only the newest MAX_CRASH_REPORTS crash files."""
    crash_files = sorted(
        Path(crash_dir).glob("crash_*.json"),
        key=lambda f: f.stat().st_mtime,
        reverse=True,
    )
    for old_file in crash_files[MAX_CRASH_REPORTS:]:
        old_file.unlink(missing_ok=True)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON handler to the root logger. Returns the log dir.

    Level comes from APP_LOG_LEVEL (default INFO), directory from
    APP_LOG_DIR when it stays inside ~/.shiftglitch.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    log_level = os.environ.get("APP_LOG_LEVEL", "INFO").upper()

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILE_NAME),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.addHandler(handler)

    _cleanup_old_logs(resolved_dir)
    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Enable faulthandler on its own file.

    RotatingFileHandler would invalidate a shared descriptor on rotation.
    """
    fault_path = os.path.join(log_dir, FAULT_FILE_NAME)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def write_crash_report(exc_type, exc_value, exc_tb, crash_dir: str | None = None) -> str:
    """Write a PII-stripped JSON crash dump. Returns its path."""
    crash_dir = crash_dir or os.path.join(app_home(), "crash_reports")
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)

    now = datetime.datetime.now(tz=datetime.timezone.utc)
    timestamp = now.strftime("%Y%m%dT%H%M%S%fZ")
    crash_path = os.path.join(crash_dir, f"crash_{timestamp}.json")

    crash_data = {
        "timestamp": timestamp,
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    crash_data = strip_pii({"extra": crash_data}, {})["extra"]

    old_umask = os.umask(0o077)
    try:
        with open(crash_path, "w") as f:
            json.dump(crash_data, f, indent=2)
    finally:
        os.umask(old_umask)

    _cleanup_old_crash_reports(crash_dir)
    return crash_path


def setup_excepthook():
    """Install sys.excepthook that writes crash dumps, then defers to the default."""

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(exc_type, exc_value, exc_tb)
        except (OSError, TypeError, ValueError) as e:
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    """Initialize all diagnostic layers. Call from main.py."""
    log_dir = setup_structured_logging()
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", log_dir)
