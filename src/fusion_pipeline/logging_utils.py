"""Logging setup for the fusion driver scripts.

Library modules only create module loggers; handlers are attached by the
scripts through :func:`setup_logging` (stderr) and
:func:`setup_file_logging` (a log file next to the predicted rasters).
:class:`StreamProgress` reports the progress of long per-pixel loops as
ordinary log records, which keeps batch logs free of carriage returns.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TypeVar

_T = TypeVar("_T")

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# GDAL/rasterio emit a DEBUG record per block read.
NOISY_LOGGERS = ("rasterio", "rasterio._env", "rasterio._io")


def setup_logging(
    level: int = logging.INFO,
    *,
    fmt: str = DEFAULT_FORMAT,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Send all records of *level* and above to stderr.

    Existing root handlers are replaced, so repeated calls do not
    duplicate output. Loggers named in *quiet* are raised to WARNING.

    Args:
        level: Logging level (e.g. ``logging.INFO``).
        fmt: Log message format string.
        quiet: Third-party loggers to silence below WARNING.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)
    root.setLevel(level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_file_logging(
    log_dir: str | Path,
    name: str = "fusion",
    level: int = logging.DEBUG,
) -> Path:
    """Append the root logger's records to ``<log_dir>/<name>.log``.

    Calling this again for the same file does not add a second handler.

    Returns:
        Path to the log file.
    """
    log_path = Path(log_dir) / f"{name}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    target = str(log_path.resolve())
    for handler in root.handlers:
        if (
            isinstance(handler, logging.FileHandler)
            and handler.baseFilename == target
        ):
            return log_path

    file_handler = logging.FileHandler(log_path, mode="a")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root.addHandler(file_handler)
    return log_path


def get_project_root() -> Path:
    """Directory holding ``pyproject.toml``, searched upward from here.

    Raises:
        FileNotFoundError: If no ``pyproject.toml`` is found.
    """
    here = Path(__file__).resolve()
    for candidate in here.parents:
        if (candidate / "pyproject.toml").is_file():
            return candidate
    msg = f"No pyproject.toml found above {here}"
    raise FileNotFoundError(msg)


class StreamProgress:
    """Iterate while logging ``desc: n/total unit`` at a fixed cadence.

    A line is logged at INFO at most every ``log_interval_s`` seconds.
    The summary line at the end is logged at DEBUG, so predictions that
    finish quickly stay quiet at the default level.

    Args:
        iterable: Items to iterate; its length is the total if it has one.
        desc: Prefix of every progress line.
        total: Number of items, when *iterable* has no length.
        unit: Name of one item in the progress line.
        log_interval_s: Minimum seconds between two INFO lines.
        logger: Logger to write to; defaults to this module's logger.
    """

    def __init__(
        self,
        iterable: Iterable[_T],
        desc: str = "Progress",
        total: int | None = None,
        unit: str = "it",
        log_interval_s: float = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.iterable = iterable
        self.desc = desc
        self.unit = unit
        self.log_interval_s = log_interval_s
        self.logger = logger or logging.getLogger(__name__)
        if total is None and hasattr(iterable, "__len__"):
            total = len(iterable)  # type: ignore[arg-type]
        self.total = total
        self.n = 0
        self._start = self._last = time.monotonic()

    def __iter__(self) -> Iterator[_T]:
        self._start = self._last = time.monotonic()
        for item in self.iterable:
            yield item
            self.update()
        self._emit(logging.DEBUG)

    def update(self, n: int = 1) -> None:
        """Count *n* finished items and log if the interval has passed."""
        self.n += n
        now = time.monotonic()
        if now - self._last >= self.log_interval_s:
            self._last = now
            self._emit(logging.INFO)

    def _emit(self, level: int) -> None:
        elapsed = time.monotonic() - self._start
        done = f"{self.n}"
        if self.total:
            done += f"/{self.total} [{100.0 * self.n / self.total:.1f}%]"
        rate = self.n / elapsed if elapsed > 0 else 0.0
        self.logger.log(
            level,
            "%s: %s %s [%.1fs, %.2f %s/s]",
            self.desc,
            done,
            self.unit,
            elapsed,
            rate,
            self.unit,
        )
