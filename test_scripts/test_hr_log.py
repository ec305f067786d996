import csv
from datetime import datetime

from ble_device import HeartRateSample
from hr_log import HeartRateLog, log_file_name


def test_log_file_name_from_start_time():
    assert log_file_name(datetime(2024, 1, 31, 18, 45, 2)) == "20240131-184502.csv"


def test_rows_are_flushed_immediately(tmp_path):
    stamp = datetime(2024, 1, 31, 18, 45, 2).astimezone()
    log = HeartRateLog.for_run(tmp_path / "logs", datetime(2024, 1, 31, 18, 45, 2))
    try:
        log.write(HeartRateSample(bpm=72, received_at=stamp))
        # readable before close
        with open(log.path, newline="") as f:
            rows = list(csv.reader(f))
    finally:
        log.close()

    assert log.path.name == "20240131-184502.csv"
    assert rows == [[stamp.isoformat(), "72"]]


def test_log_appends_without_header(tmp_path):
    path = tmp_path / "hr.csv"
    stamp = datetime(2024, 1, 31, 18, 45, 2)
    for bpm in (60, 61):
        with HeartRateLog(path) as log:
            log.write(HeartRateSample(bpm=bpm, received_at=stamp))

    assert path.read_text().splitlines() == [f"{stamp.isoformat()},60", f"{stamp.isoformat()},61"]
