from __future__ import annotations

import contextlib
import json
import logging
import platform
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from cpuburn.config import Session
from cpuburn.governor import GovernorController
from cpuburn.load import BusyLoopBackend, LoadGenerator, StressNgBackend
from cpuburn.sensors import SensorReader
from cpuburn.telemetry import TelemetryLogger, format_timestamp, local_now, open_sink

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class RunResult:
    rows: int
    backend: Optional[str]
    governor_changed: Optional[bool]
    cancelled: bool
    log_path: Path
    meta_path: Optional[Path] = None


@contextlib.contextmanager
def stop_on_signals(event: threading.Event, signals=STOP_SIGNALS) -> Iterator[None]:
    """Map termination signals onto ``event`` for the duration of the block."""

    def handle_sig(signum, _frame):
        logger.debug("received %s", signal.Signals(signum).name)
        event.set()

    previous = {}
    try:
        for sig in signals:
            previous[sig] = signal.signal(sig, handle_sig)
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class Orchestrator:
    """Runs one Session: governor, load, telemetry, guaranteed teardown."""

    def __init__(
        self,
        session: Session,
        *,
        reader: Optional[SensorReader] = None,
        governor: Optional[GovernorController] = None,
        load: Optional[LoadGenerator] = None,
        telemetry: Optional[TelemetryLogger] = None,
    ):
        self.session = session
        self.reader = reader or SensorReader(session.sysfs_root, session.procfs_root)
        self.governor = governor or GovernorController(session.sysfs_root)
        self.load = load or LoadGenerator([StressNgBackend(), BusyLoopBackend(method=session.fallback_method)])
        self.telemetry = telemetry or TelemetryLogger(self.reader)
        self.cancel = threading.Event()

    def request_stop(self) -> None:
        self.cancel.set()

    def run(self, handle_signals: bool = True) -> RunResult:
        session = self.session
        started = local_now()
        governor_changed: Optional[bool] = None
        backend: Optional[str] = None
        rows = 0

        guard = stop_on_signals(self.cancel) if handle_signals else contextlib.nullcontext()
        with guard, open_sink(session.log_path) as sink:
            if session.set_governor:
                governor_changed = self.governor.apply_performance_mode()

            backend = self.load.start(session.workers, session.duration_s)
            try:
                logger.info("Writing log: %s", session.log_path)
                rows = self.telemetry.run(session, sink, self.cancel)
            finally:
                self.load.stop()

        result = RunResult(
            rows=rows,
            backend=backend,
            governor_changed=governor_changed,
            cancelled=self.cancel.is_set(),
            log_path=session.log_path,
        )
        if session.write_meta:
            result.meta_path = self.write_meta(result, started)
        return result

    def write_meta(self, result: RunResult, started) -> Optional[Path]:
        session = self.session
        meta = {
            "rows": result.rows,
            "duration_s": session.duration_s,
            "workers": session.workers,
            "backend": result.backend,
            "fallback_method": session.fallback_method,
            "set_governor": session.set_governor,
            "governor_changed": result.governor_changed,
            "cancelled": result.cancelled,
            "started": format_timestamp(started),
            "finished": format_timestamp(local_now()),
            "log_path": str(session.log_path),
            "platform": platform.platform(),
            "python": sys.version.split()[0],
        }
        try:
            session.meta_path.write_text(json.dumps(meta, indent=2))
        except OSError as exc:
            logger.warning("cannot write %s: %s", session.meta_path, exc)
            return None
        return session.meta_path
