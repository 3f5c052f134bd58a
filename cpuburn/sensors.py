from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence, TypeVar

from cpuburn.errors import SensorUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

VCGENCMD = "vcgencmd"
COMMAND_TIMEOUT_S = 2.0

RE_VCGEN_TEMP = re.compile(r"temp=(-?\d+(?:\.\d+)?)")
RE_VCGEN_THROTTLED = re.compile(r"throttled=(0x[0-9a-fA-F]+)")

# Failures a strategy may hit while probing its source.
_PROBE_ERRORS = (SensorUnavailable, OSError, ValueError, subprocess.SubprocessError)


def first_available(strategies: Sequence[Callable[[], T]], field: str) -> Optional[T]:
    """Return the first value any strategy produces, or None if all fail."""
    for strategy in strategies:
        try:
            return strategy()
        except _PROBE_ERRORS as exc:
            logger.debug("%s: %s unavailable (%s)", field, getattr(strategy, "__name__", strategy), exc)
    return None


def read_sysfs_text(path: Path) -> str:
    text = path.read_text().strip()
    if not text:
        raise SensorUnavailable(f"{path} is empty")
    return text


@dataclass(frozen=True)
class Sample:
    """One telemetry record. None means the host has no source for that field."""

    timestamp: datetime
    temp_c: Optional[float] = None
    freq_khz: Optional[int] = None
    load1: Optional[float] = None
    throttle_hex: Optional[str] = None


class SensorReader:
    """Instantaneous temperature, clock, load and throttle queries.

    Each query walks an ordered list of sources and returns None when none of
    them answers. No query raises.
    """

    def __init__(
        self,
        sysfs_root: Path | str = "/sys",
        procfs_root: Path | str = "/proc",
        *,
        vcgencmd: str = VCGENCMD,
        which: Callable[[str], Optional[str]] = shutil.which,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.sysfs_root = Path(sysfs_root)
        self.procfs_root = Path(procfs_root)
        self.vcgencmd = vcgencmd
        self._which = which
        self._run = run

        self.temperature_sources = (self._vcgencmd_temperature, self._thermal_zone_temperature)
        self.frequency_sources = (self._policy_frequency, self._cpu0_frequency)
        self.load_sources = (self._proc_loadavg,)
        self.throttle_sources = (self._vcgencmd_throttled,)

    # ---------------------------- queries ----------------------------

    def read_temperature(self) -> Optional[float]:
        return first_available(self.temperature_sources, "temp_C")

    def read_frequency_khz(self) -> Optional[int]:
        return first_available(self.frequency_sources, "freq_khz")

    def read_load1(self) -> Optional[float]:
        return first_available(self.load_sources, "load1")

    def read_throttle_status(self) -> Optional[str]:
        return first_available(self.throttle_sources, "throttle_hex")

    def sample(self, now: datetime) -> Sample:
        return Sample(
            timestamp=now,
            temp_c=self.read_temperature(),
            freq_khz=self.read_frequency_khz(),
            load1=self.read_load1(),
            throttle_hex=self.read_throttle_status(),
        )

    # ---------------------------- sources ----------------------------

    def _vcgencmd_output(self, *args: str) -> str:
        exe = self._which(self.vcgencmd)
        if exe is None:
            raise SensorUnavailable(f"{self.vcgencmd} not on PATH")
        cp = self._run(
            [exe, *args],
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT_S,
            check=True,
        )
        return cp.stdout or ""

    def _vcgencmd_temperature(self) -> float:
        # temp=54.0'C
        out = self._vcgencmd_output("measure_temp")
        m = RE_VCGEN_TEMP.search(out)
        if not m:
            raise SensorUnavailable(f"unexpected measure_temp output: {out!r}")
        return round(float(m.group(1)), 1)

    def _thermal_zone_temperature(self) -> float:
        raw = read_sysfs_text(self.sysfs_root / "class" / "thermal" / "thermal_zone0" / "temp")
        return round(float(raw) / 1000.0, 1)

    def _policy_frequency(self) -> int:
        return int(read_sysfs_text(self.sysfs_root / "devices/system/cpu/cpufreq/policy0/scaling_cur_freq"))

    def _cpu0_frequency(self) -> int:
        return int(read_sysfs_text(self.sysfs_root / "devices/system/cpu/cpu0/cpufreq/scaling_cur_freq"))

    def _proc_loadavg(self) -> float:
        fields = read_sysfs_text(self.procfs_root / "loadavg").split()
        return float(fields[0])

    def _vcgencmd_throttled(self) -> str:
        # throttled=0x50000
        out = self._vcgencmd_output("get_throttled")
        m = RE_VCGEN_THROTTLED.search(out)
        if not m:
            raise SensorUnavailable(f"unexpected get_throttled output: {out!r}")
        return m.group(1)
