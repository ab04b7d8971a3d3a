"""
Logging for the decision engine. Every record is tagged with the traded pair;
console output goes to stderr so stdout stays free for JSON verdicts.
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import IO, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(symbol)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SymbolFilter(logging.Filter):
    """Stamp `symbol` on records so one log file can hold several pairs."""

    def __init__(self, symbol: str = "-"):
        super().__init__()
        self.symbol = symbol

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "symbol"):
            record.symbol = self.symbol
        return True


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_file: Optional[str] = None,
    symbol: str = "-",
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Configure the package logger "decision_engine"; module loggers live under
    "decision_engine.<area>" and propagate to it. Calling again replaces the
    handlers, so repeated CLI runs in one process do not duplicate output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    pkg = logging.getLogger("decision_engine")
    pkg.setLevel(log_level)
    for handler in list(pkg.handlers):
        pkg.removeHandler(handler)
        handler.close()
    pkg.filters.clear()
    pkg.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    tag = SymbolFilter(symbol)

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(tag)
    pkg.addHandler(console)

    if log_dir and log_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        fh.addFilter(tag)
        pkg.addHandler(fh)

    return pkg
