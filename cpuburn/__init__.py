# CPU load + thermal telemetry logging
from cpuburn.config import Session, resolve_session
from cpuburn.governor import GovernorController
from cpuburn.load import LoadGenerator, LoadState, WorkerHandle
from cpuburn.orchestrator import Orchestrator, RunResult
from cpuburn.sensors import Sample, SensorReader
from cpuburn.telemetry import HEADER, TelemetryLogger

__all__ = [
    "Session",
    "resolve_session",
    "GovernorController",
    "LoadGenerator",
    "LoadState",
    "WorkerHandle",
    "Orchestrator",
    "RunResult",
    "Sample",
    "SensorReader",
    "HEADER",
    "TelemetryLogger",
]
