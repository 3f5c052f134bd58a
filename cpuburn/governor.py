from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from cpuburn.errors import GovernorChangeFailed

logger = logging.getLogger(__name__)

CPUPOWER = "cpupower"
PERFORMANCE = "performance"

GOVERNOR_GLOBS = [
    "devices/system/cpu/cpufreq/policy*/scaling_governor",
    "devices/system/cpu/cpu*/cpufreq/scaling_governor",
]


class GovernorController:
    """Best-effort switch of the CPU scaling governor.

    Tries ``cpupower frequency-set`` first, then writes the governor name into
    every writable per-policy and per-CPU control file. Nothing is restored
    afterwards.
    """

    def __init__(
        self,
        sysfs_root: Path | str = "/sys",
        *,
        governor: str = PERFORMANCE,
        cpupower: str = CPUPOWER,
        which: Callable[[str], Optional[str]] = shutil.which,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.sysfs_root = Path(sysfs_root)
        self.governor = governor
        self.cpupower = cpupower
        self._which = which
        self._run = run

    def control_files(self) -> List[Path]:
        files: List[Path] = []
        for pattern in GOVERNOR_GLOBS:
            files.extend(sorted(self.sysfs_root.glob(pattern)))
        return files

    def apply_performance_mode(self) -> bool:
        changed = 0
        for attempt in (self._set_with_cpupower, self._write_control_files):
            try:
                changed += attempt()
            except GovernorChangeFailed as exc:
                logger.debug("governor: %s", exc)

        if changed:
            logger.info("CPU governor: attempted to set '%s'", self.governor)
        else:
            logger.info("CPU governor: not changed (no permission/driver). Run with sudo if you want this.")
        return changed > 0

    def _set_with_cpupower(self) -> int:
        exe = self._which(self.cpupower)
        if exe is None:
            raise GovernorChangeFailed(f"{self.cpupower} not on PATH")
        try:
            self._run(
                [exe, "frequency-set", "-g", self.governor],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise GovernorChangeFailed(f"{self.cpupower} frequency-set failed: {exc}") from exc
        return 1

    def _write_control_files(self) -> int:
        written = 0
        for gov in self.control_files():
            if not os.access(gov, os.W_OK):
                continue
            try:
                gov.write_text(f"{self.governor}\n")
            except OSError as exc:
                logger.debug("governor: cannot write %s: %s", gov, exc)
                continue
            written += 1
        if not written:
            raise GovernorChangeFailed("no writable scaling_governor files")
        return written
