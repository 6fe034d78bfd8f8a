import logging
import os
import glob
import re
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Set

_INITIALIZED = False
_SECRETS: Set[str] = set()
_SECRETS_LOCK = threading.Lock()

MASK = "********"
_AUTH_HEADER = re.compile(r"(?i)(authorization['\"]?\s*[:=]\s*['\"]?)(basic|bearer)?\s*[^\s'\",}]+")


def register_secret(value: str) -> None:
    """Make sure ``value`` never reaches a log record (backend passwords etc.)."""
    if value:
        with _SECRETS_LOCK:
            _SECRETS.add(value)


class SecretRedactionFilter(logging.Filter):
    """Mask registered secrets and Authorization header values in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = self.redact(msg)
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True

    @staticmethod
    def redact(text: str) -> str:
        with _SECRETS_LOCK:
            secrets = sorted(_SECRETS, key=len, reverse=True)
        for s in secrets:
            text = text.replace(s, MASK)
        return _AUTH_HEADER.sub(lambda m: f"{m.group(1)}{MASK}", text)


class SizeTimestampRotatingFileHandler(RotatingFileHandler):
    """Rotate a single log file once it reaches maxBytes.

    The live log stays at the configured path (e.g. logs/app.log); rotated files
    get a timestamp suffix, e.g. logs/app_20260124_153012.log. backupCount=0 keeps
    every rotated file, backupCount > 0 keeps the newest N.
    """

    def doRollover(self) -> None:
        if self.stream:
            try:
                self.stream.close()
            finally:
                self.stream = None

        base_path = Path(self.baseFilename)
        log_dir = str(base_path.parent)
        stem = base_path.stem
        suffix = base_path.suffix or ".log"

        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        rotated = os.path.join(log_dir, f"{stem}_{ts}{suffix}")
        i = 1
        while os.path.exists(rotated):
            rotated = os.path.join(log_dir, f"{stem}_{ts}_{i}{suffix}")
            i += 1

        if os.path.exists(self.baseFilename):
            try:
                os.replace(self.baseFilename, rotated)
            except OSError:
                # Keep logging into the current file rather than block the export.
                pass

        if self.backupCount and self.backupCount > 0:
            pattern = os.path.join(log_dir, f"{stem}_*{suffix}")
            files = sorted(glob.glob(pattern), key=os.path.getmtime, reverse=True)
            for f in files[self.backupCount:]:
                try:
                    os.remove(f)
                except OSError:
                    pass

        if not self.delay:
            self.stream = self._open()


def init_logging(
    log_level: str = "INFO",
    log_file: str = "logs/app.log",
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 0,             # 0 = keep all rotated logs
) -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, log_level.upper(), logging.INFO)
    fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

    redaction = SecretRedactionFilter()
    file_handler = SizeTimestampRotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    stream_handler = logging.StreamHandler()
    for h in (file_handler, stream_handler):
        h.addFilter(redaction)

    logging.basicConfig(level=level, format=fmt, handlers=[file_handler, stream_handler])
    _INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"warehouse_export.{name}")
