from __future__ import annotations

import csv
import logging
import os
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import IO, Callable, List, Optional

from cpuburn.config import Session
from cpuburn.errors import SinkWriteError
from cpuburn.sensors import Sample, SensorReader

logger = logging.getLogger(__name__)

HEADER = ["timestamp", "temp_C", "freq_khz", "load1", "throttle_hex"]


def local_now() -> datetime:
    return datetime.now().astimezone()


def format_timestamp(ts: datetime) -> str:
    # 2024-01-01T12:00:00+00:00, same shape as `date -Is`
    if ts.tzinfo is None:
        ts = ts.astimezone()
    return ts.isoformat(timespec="seconds")


def _blank(value, fmt: str) -> str:
    return "" if value is None else fmt.format(value)


def format_row(sample: Sample) -> List[str]:
    return [
        format_timestamp(sample.timestamp),
        _blank(sample.temp_c, "{:.1f}"),
        _blank(sample.freq_khz, "{:d}"),
        _blank(sample.load1, "{:.2f}"),
        _blank(sample.throttle_hex, "{}"),
    ]


def open_sink(path: Path) -> IO[str]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.open("w", newline="", encoding="utf-8")
    except OSError as exc:
        raise SinkWriteError(f"cannot create log {path}: {exc}") from exc


def until_next_second(ts: datetime) -> float:
    return 1.0 - ts.microsecond / 1e6 if ts.microsecond else 0.0


class TelemetryLogger:
    """One CSV row per wall-clock second.

    Ticks are aligned to second boundaries of ``now``, which also stamps the
    rows, so a late wake-up cannot repeat or skip a second. ``clock`` only
    measures elapsed time for the duration check. The loop sleeps on the
    cancellation event so a stop request ends it within one second.
    """

    def __init__(
        self,
        reader: SensorReader,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = local_now,
    ):
        self.reader = reader
        self.clock = clock
        self.now = now

    def run(self, session: Session, sink: IO[str], cancel: Optional[threading.Event] = None) -> int:
        cancel = cancel or threading.Event()
        writer = csv.writer(sink, lineterminator="\n")
        self._append(sink, writer, HEADER)

        rows = 0
        last_stamp: Optional[datetime] = None
        delay = until_next_second(self.now())
        if delay and cancel.wait(delay):
            return self._finish(rows)

        t0 = self.clock()
        while not cancel.is_set():
            elapsed = self.clock() - t0
            if session.bounded and elapsed >= session.duration_s:
                break

            now = self.now()
            stamp = now.replace(microsecond=0)
            if last_stamp is not None and stamp <= last_stamp:
                # woke inside the second already logged
                if cancel.wait(until_next_second(now) or 1.0):
                    break
                continue
            if last_stamp is not None and (stamp - last_stamp).total_seconds() > 1:
                logger.debug("sampling fell behind; gap between %s and %s", last_stamp, stamp)

            sample = self.reader.sample(stamp)
            self._append(sink, writer, format_row(sample))
            rows += 1
            last_stamp = stamp

            if cancel.wait(until_next_second(self.now()) or 1.0):
                break

        return self._finish(rows)

    def _finish(self, rows: int) -> int:
        logger.info("Telemetry stopped after %d samples", rows)
        return rows

    def _append(self, sink: IO[str], writer, row: List[str]) -> None:
        try:
            writer.writerow(row)
            sink.flush()
            os.fsync(sink.fileno())
        except OSError as exc:
            raise SinkWriteError(f"cannot append to log {getattr(sink, 'name', sink)}: {exc}") from exc
