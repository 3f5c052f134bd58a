import subprocess
import tempfile
import unittest
from pathlib import Path

from cpuburn.governor import GovernorController
from cpuburn.tests.fakes import write_file


def no_which(_name):
    return None


class TestGovernorController(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.sysfs = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_nothing_available_returns_false(self):
        gc = GovernorController(self.sysfs, which=no_which)
        self.assertFalse(gc.apply_performance_mode())
        # idempotent
        self.assertFalse(gc.apply_performance_mode())

    def test_writes_policy_and_cpu_files(self):
        files = [
            write_file(self.sysfs, "devices/system/cpu/cpufreq/policy0/scaling_governor", "ondemand\n"),
            write_file(self.sysfs, "devices/system/cpu/cpufreq/policy4/scaling_governor", "schedutil\n"),
            write_file(self.sysfs, "devices/system/cpu/cpu0/cpufreq/scaling_governor", "ondemand\n"),
        ]
        gc = GovernorController(self.sysfs, which=no_which)
        self.assertEqual(len(gc.control_files()), 3)
        self.assertTrue(gc.apply_performance_mode())
        for f in files:
            self.assertEqual(f.read_text(), "performance\n")

    def test_cpupower_success(self):
        calls = []

        def run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0)

        gc = GovernorController(self.sysfs, which=lambda n: f"/usr/bin/{n}", run=run)
        self.assertTrue(gc.apply_performance_mode())
        self.assertEqual(calls, [["/usr/bin/cpupower", "frequency-set", "-g", "performance"]])

    def test_cpupower_failure_is_not_raised(self):
        def run(cmd, **kwargs):
            raise subprocess.CalledProcessError(237, cmd)

        gc = GovernorController(self.sysfs, which=lambda n: f"/usr/bin/{n}", run=run)
        self.assertFalse(gc.apply_performance_mode())

    def test_cpupower_failure_still_tries_files(self):
        def run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        gov = write_file(self.sysfs, "devices/system/cpu/cpu0/cpufreq/scaling_governor", "powersave\n")
        gc = GovernorController(self.sysfs, which=lambda n: f"/usr/bin/{n}", run=run)
        self.assertTrue(gc.apply_performance_mode())
        self.assertEqual(gov.read_text(), "performance\n")


if __name__ == "__main__":
    unittest.main()
