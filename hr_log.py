import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ble_device import HeartRateSample

logger = logging.getLogger(__name__)


def log_file_name(now: Optional[datetime] = None) -> str:
    """One file per run, named after the start time, e.g. ``20240131-184502.csv``."""
    now = now or datetime.now()
    return f"{now:%Y%m%d-%H%M%S}.csv"


class HeartRateLog:
    """
    Append-only CSV of ``timestamp,bpm`` rows (no header).

    Every row is flushed right away so nothing is lost if the process is killed.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._file = open(self.path, "a", newline="")
        self._writer = csv.writer(self._file)
        logger.info("[LOG] Writing heart rate log to %s", self.path)

    @classmethod
    def for_run(cls, log_dir=".", started_at: Optional[datetime] = None):
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        return cls(log_dir / log_file_name(started_at))

    def write(self, sample: HeartRateSample):
        self._writer.writerow([sample.received_at.isoformat(), sample.bpm])
        self._file.flush()

    def close(self):
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
