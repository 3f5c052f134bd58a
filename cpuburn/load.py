from __future__ import annotations

import enum
import logging
import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from cpuburn.errors import ConfigurationError, LoadBackendUnavailable

logger = logging.getLogger(__name__)

STRESS_NG = "stress-ng"
DEFAULT_TERMINATE_TIMEOUT_S = 5.0
# Lets `python -m cpuburn.worker` resolve from a source checkout.
PACKAGE_PARENT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class LoadState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class WorkerHandle:
    backend: str
    process: subprocess.Popen

    @property
    def pid(self) -> int:
        return self.process.pid

    def alive(self) -> bool:
        return self.process.poll() is None


def _process_group_kwargs() -> Dict[str, Any]:
    # own group: terminal Ctrl+C skips workers, killpg reaches stress-ng children
    return {"start_new_session": True}


def start_subprocess(cmd: List[str], env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
    kwargs: Dict[str, Any] = {
        "env": env,
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    kwargs.update(_process_group_kwargs())
    return subprocess.Popen(cmd, **kwargs)


def signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.send_signal(sig)


class StressNgBackend:
    """One stress-ng process running ``workers`` matrixprod CPU stressors."""

    name = "stress-ng"

    def __init__(self, executable: str = STRESS_NG, which: Callable[[str], Optional[str]] = shutil.which):
        self.executable = executable
        self._which = which

    def check(self) -> str:
        exe = self._which(self.executable)
        if exe is None:
            raise LoadBackendUnavailable(f"{self.executable} not on PATH")
        return exe

    def command(self, exe: str, workers: int, duration_s: Optional[int]) -> List[str]:
        cmd = [exe, "--cpu", str(workers), "--cpu-method", "matrixprod", "--verify"]
        if duration_s:
            # --timeout ends stress-ng itself; logging still runs for the full duration
            cmd += ["--timeout", f"{duration_s}s"]
        return cmd

    def spawn(self, workers: int, duration_s: Optional[int]) -> List[WorkerHandle]:
        exe = self.check()
        return [WorkerHandle(self.name, start_subprocess(self.command(exe, workers, duration_s)))]

    def describe(self, workers: int) -> str:
        return f"stress-ng (workers={workers})"


class BusyLoopBackend:
    """``workers`` independent Python processes, each spinning one core.

    The workers ignore the run duration; they end when LoadGenerator.stop()
    terminates them.
    """

    name = "busy-loop"

    def __init__(self, python: Optional[str] = None, method: str = "counter"):
        self.python = python or sys.executable
        self.method = method

    def check(self) -> str:
        exe = self.python if os.path.sep in self.python else shutil.which(self.python)
        if not exe or not os.access(exe, os.X_OK):
            raise LoadBackendUnavailable(f"python runtime {self.python!r} not found")
        return exe

    def command(self, exe: str) -> List[str]:
        return [exe, "-m", "cpuburn.worker", "--method", self.method]

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(p for p in (PACKAGE_PARENT, env.get("PYTHONPATH")) if p)
        return env

    def spawn(self, workers: int, duration_s: Optional[int]) -> List[WorkerHandle]:
        exe = self.check()
        handles: List[WorkerHandle] = []
        try:
            for _ in range(workers):
                handles.append(WorkerHandle(self.name, start_subprocess(self.command(exe), self.environment())))
        except OSError:
            terminate_handles(handles, DEFAULT_TERMINATE_TIMEOUT_S)
            raise
        return handles

    def describe(self, workers: int) -> str:
        return f"python busy-loop per core (workers={workers}, method={self.method})"


def terminate_handles(handles: Sequence[WorkerHandle], timeout_s: float) -> None:
    """SIGTERM every group, then reap; SIGKILL anything still alive after timeout_s."""
    for h in handles:
        if h.alive():
            signal_group(h.process, signal.SIGTERM)
    for h in handles:
        try:
            h.process.wait(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            logger.warning("worker pid=%d ignored SIGTERM; killing", h.pid)
            signal_group(h.process, signal.SIGKILL)
            h.process.wait()


class LoadGenerator:
    """Owns the worker processes of exactly one load backend.

    Backends are tried in order; the first one available on the host is used.
    """

    def __init__(self, backends: Optional[Sequence[Any]] = None, terminate_timeout_s: float = DEFAULT_TERMINATE_TIMEOUT_S):
        if backends is None:
            backends = [StressNgBackend(), BusyLoopBackend()]
        self.backends = list(backends)
        self.terminate_timeout_s = terminate_timeout_s
        self.state = LoadState.IDLE
        self.backend: Optional[Any] = None
        self._handles: List[WorkerHandle] = []

    @property
    def handles(self) -> tuple:
        return tuple(self._handles)

    def live_count(self) -> int:
        return sum(1 for h in self._handles if h.alive())

    def select_backend(self):
        for backend in self.backends:
            try:
                backend.check()
            except LoadBackendUnavailable as exc:
                logger.info("Load generator: %s unavailable (%s)", backend.name, exc)
                continue
            return backend
        raise ConfigurationError("no load backend available (need stress-ng or a python runtime)")

    def start(self, workers: int, duration_s: Optional[int] = None) -> str:
        if self.state is not LoadState.IDLE:
            raise RuntimeError(f"load generator cannot start from state {self.state.value}")
        if workers < 1:
            raise ConfigurationError(f"worker count must be positive, got {workers}")

        backend = self.select_backend()
        logger.info("Load generator: %s", backend.describe(workers))
        self._handles = list(backend.spawn(workers, duration_s))
        self.backend = backend
        self.state = LoadState.RUNNING
        logger.debug("spawned pids: %s", [h.pid for h in self._handles])
        return backend.name

    def stop(self) -> None:
        if self._handles:
            logger.info("Stopping load...")
            terminate_handles(self._handles, self.terminate_timeout_s)
        self._handles = []
        self.state = LoadState.STOPPED
