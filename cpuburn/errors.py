"""Exception types shared across the cpu-burn components."""


class CpuBurnError(Exception):
    pass


class SensorUnavailable(CpuBurnError):
    """A single telemetry source is missing or unreadable."""


class GovernorChangeFailed(CpuBurnError):
    """A governor change attempt had no permission or no control surface."""


class LoadBackendUnavailable(CpuBurnError):
    """A load backend cannot run on this host."""


class ConfigurationError(CpuBurnError):
    """Invalid run configuration; the run must not start."""


class SinkWriteError(CpuBurnError):
    """The telemetry log cannot be created or appended."""
