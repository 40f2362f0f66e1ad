"""Logging for the portfolio tracker.

Console output follows ``LOG_LEVEL``.  On disk every process gets its own
``polyfolio_<start time>.log`` plus ``polyfolio.log``, which is overwritten
at start so it always mirrors the current run.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from polyfolio.config import settings

_KEEP_RUN_LOGS = 10
_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s - %(message)s"


def _prune_run_logs(logs_dir: Path) -> None:
    runs = sorted(logs_dir.glob("polyfolio_*.log"), key=lambda p: p.stat().st_mtime)
    for stale in runs[:-_KEEP_RUN_LOGS]:
        try:
            stale.unlink()
        except OSError:
            pass


def _file_handler(path: Path, formatter: logging.Formatter, mode: str = "a") -> logging.Handler:
    handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def _setup_logger(name: str = "polyfolio") -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    if log.handlers:
        return log

    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    console.setFormatter(formatter)
    log.addHandler(console)

    logs_dir = settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_log = logs_dir / f"polyfolio_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
    log.addHandler(_file_handler(run_log, formatter))
    try:
        log.addHandler(_file_handler(logs_dir / "polyfolio.log", formatter, mode="w"))
    except OSError:
        # Another process may hold it open on Windows
        pass

    _prune_run_logs(logs_dir)
    log.info("Logging to %s", run_log.name)
    return log


logger = _setup_logger()
