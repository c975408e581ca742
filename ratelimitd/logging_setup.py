from __future__ import annotations

import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import CFG

_LOG_SETUP_DONE = False
_ACTIVE_LOG_FILE: Optional[Path] = None


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = str(os.getenv(name, str(default)) or "").strip()
    try:
        v = int(float(raw))
    except Exception:
        v = int(default)
    return max(int(lo), min(int(hi), v))


def _log_level() -> int:
    raw = str(CFG.log_level or "INFO").strip().upper()
    return int(getattr(logging, raw, logging.INFO))


def _fallback_path(path: Path) -> Path:
    return Path("/tmp/ratelimit") / path.name


def _select_writable_path(primary: Path) -> Optional[Path]:
    for cand in (primary, _fallback_path(primary)):
        try:
            cand.parent.mkdir(parents=True, exist_ok=True)
            return cand
        except Exception:
            continue
    return None


def _runtime_formatter() -> logging.Formatter:
    return logging.Formatter("%(asctime)s %(levelname)s %(process)d %(threadName)s %(name)s | %(message)s")


def configure_runtime_logging() -> None:
    global _LOG_SETUP_DONE
    global _ACTIVE_LOG_FILE
    if _LOG_SETUP_DONE:
        return

    level = _log_level()
    root = logging.getLogger()
    root.setLevel(level)
    fmt = _runtime_formatter()

    # Keep stdout logging when root has no handlers (development mode).
    if not root.handlers:
        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(level)
        sh.setFormatter(fmt)
        root.addHandler(sh)

    raw = str(CFG.log_file or "").strip()
    selected = _select_writable_path(Path(raw)) if raw else None
    if selected is not None:
        try:
            fh = RotatingFileHandler(
                str(selected),
                maxBytes=_env_int("RATELIMIT_LOG_MAX_BYTES", 5 * 1024 * 1024, 256 * 1024, 512 * 1024 * 1024),
                backupCount=_env_int("RATELIMIT_LOG_BACKUP_COUNT", 5, 1, 50),
                encoding="utf-8",
            )
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            _ACTIVE_LOG_FILE = selected
        except Exception:
            logging.getLogger(__name__).exception("failed to setup file logging")

    if hasattr(threading, "excepthook"):
        crash = logging.getLogger("ratelimit.crash")
        old_thread_excepthook = threading.excepthook

        def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
            crash.critical(
                "uncaught exception in thread name=%s",
                args.thread.name if args.thread else "",
                exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            )
            old_thread_excepthook(args)

        threading.excepthook = _thread_excepthook

    _LOG_SETUP_DONE = True
    logging.getLogger(__name__).info("runtime logging enabled (file=%s)", _ACTIVE_LOG_FILE)
