import json
import os
import signal
import tempfile
import unittest
from pathlib import Path

from cpuburn.config import Session
from cpuburn.errors import ConfigurationError
from cpuburn.orchestrator import Orchestrator
from cpuburn.telemetry import HEADER, TelemetryLogger
from cpuburn.tests.fakes import FakeClock, StaticReader


class RecordingLoad:
    def __init__(self, fail_start=False):
        self.fail_start = fail_start
        self.calls = []

    def start(self, workers, duration_s=None):
        self.calls.append(("start", workers, duration_s))
        if self.fail_start:
            raise ConfigurationError("no load backend available")
        return "fake"

    def stop(self):
        self.calls.append(("stop",))


class RecordingGovernor:
    def __init__(self, result=False):
        self.result = result
        self.calls = 0

    def apply_performance_mode(self):
        self.calls += 1
        return self.result


class ExplodingReader:
    def sample(self, now):
        raise RuntimeError("sensor bus fell over")


class SignallingReader(StaticReader):
    """Delivers SIGTERM to this process on the given sample."""

    def __init__(self, on_call: int):
        super().__init__(load1=1.0)
        self.on_call = on_call

    def sample(self, now):
        s = super().sample(now)
        if self.calls == self.on_call:
            os.kill(os.getpid(), signal.SIGTERM)
        return s


class TestOrchestrator(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.log = Path(self._tmp.name) / "out" / "burn.csv"

    def tearDown(self):
        self._tmp.cleanup()

    def session(self, **kw):
        kw.setdefault("duration_s", 3)
        kw.setdefault("workers", 2)
        return Session(log_path=self.log, **kw)

    def fake_telemetry(self, reader):
        # frozen clock; only for runs that end on their first tick
        clock = FakeClock()
        return TelemetryLogger(reader, clock=clock, now=clock.now)

    def test_normal_run_stops_load_once_and_writes_meta(self):
        load = RecordingLoad()
        governor = RecordingGovernor(result=True)
        reader = StaticReader(temp_c=50.0)
        clock = FakeClock()

        class TickingLogger(TelemetryLogger):
            def run(self, session, sink, cancel=None):
                return super().run(session, sink, _AdvancingEvent(clock, cancel))

        telemetry = TickingLogger(reader, clock=clock, now=clock.now)
        orch = Orchestrator(self.session(), reader=reader, governor=governor, load=load, telemetry=telemetry)
        result = orch.run(handle_signals=False)

        self.assertEqual(result.rows, 3)
        self.assertFalse(result.cancelled)
        self.assertEqual(load.calls, [("start", 2, 3), ("stop",)])
        self.assertEqual(governor.calls, 1)

        lines = self.log.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[0], ",".join(HEADER))
        self.assertEqual(len(lines), 4)

        meta = json.loads(result.meta_path.read_text())
        self.assertEqual(meta["rows"], 3)
        self.assertEqual(meta["backend"], "fake")
        self.assertTrue(meta["governor_changed"])
        self.assertFalse(meta["cancelled"])

    def test_governor_skipped_when_disabled(self):
        governor = RecordingGovernor()
        orch = Orchestrator(
            self.session(set_governor=False, write_meta=False),
            governor=governor,
            load=RecordingLoad(),
            telemetry=self.fake_telemetry(StaticReader()),
        )
        orch.request_stop()
        result = orch.run(handle_signals=False)
        self.assertEqual(governor.calls, 0)
        self.assertIsNone(result.governor_changed)
        self.assertIsNone(result.meta_path)
        self.assertFalse(self.log.with_suffix(".meta.json").exists())

    def test_error_in_loop_still_stops_load(self):
        load = RecordingLoad()
        orch = Orchestrator(
            self.session(),
            governor=RecordingGovernor(),
            load=load,
            telemetry=self.fake_telemetry(ExplodingReader()),
        )
        with self.assertRaises(RuntimeError):
            orch.run(handle_signals=False)
        self.assertEqual(load.calls[-1], ("stop",))
        self.assertEqual(load.calls.count(("stop",)), 1)

    def test_failed_start_does_not_sample(self):
        load = RecordingLoad(fail_start=True)
        reader = StaticReader()
        orch = Orchestrator(self.session(), governor=RecordingGovernor(), load=load, telemetry=self.fake_telemetry(reader))
        with self.assertRaises(ConfigurationError):
            orch.run(handle_signals=False)
        self.assertEqual(reader.calls, 0)
        self.assertNotIn(("stop",), load.calls)

    def test_sigterm_cancels_unbounded_run(self):
        load = RecordingLoad()
        reader = SignallingReader(on_call=2)
        previous = signal.getsignal(signal.SIGTERM)
        orch = Orchestrator(
            self.session(duration_s=None),
            governor=RecordingGovernor(),
            load=load,
            telemetry=TelemetryLogger(reader),
        )
        result = orch.run()

        self.assertTrue(result.cancelled)
        self.assertEqual(result.rows, 2)
        self.assertEqual(load.calls.count(("stop",)), 1)
        self.assertIs(signal.getsignal(signal.SIGTERM), previous)
        self.assertEqual(len(self.log.read_text(encoding="utf-8").splitlines()), 3)


class _AdvancingEvent:
    """Wraps the orchestrator's Event; each wait advances the fake clock."""

    def __init__(self, clock, event):
        self.clock = clock
        self.event = event

    def is_set(self):
        return self.event.is_set()

    def wait(self, timeout):
        self.clock.t += timeout
        return self.event.is_set()


if __name__ == "__main__":
    unittest.main()
