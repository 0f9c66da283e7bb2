from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from ..system import ToolError
from .config import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_SAMPLE_TIME,
    IdleLatencyTest,
    LoadedLatencySweep,
    MlcWorkload,
)

LOGGER = logging.getLogger("pmembench.benchmark.runner")

PERTHREAD_FILENAME = "PMem_perthread.txt"
DELAYS_FILENAME = "delays.txt"
RANDOM_IDLE_STRIDE = 256


class MlcRunner:
    """Build MLC command lines and execute them, keeping each stdout verbatim."""

    def __init__(
        self,
        mlc: str,
        output_dir: Path,
        sample_time: int = DEFAULT_SAMPLE_TIME,
        avx512: bool = True,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self._mlc = mlc
        self._output_dir = output_dir
        self._sample_time = sample_time
        self._avx512 = avx512
        self._cooldown_seconds = cooldown_seconds

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    @property
    def perthread_path(self) -> Path:
        return self._output_dir / PERTHREAD_FILENAME

    @property
    def delays_path(self) -> Path:
        return self._output_dir / DELAYS_FILENAME

    def idle_latency_command(self, cpu: int, test: IdleLatencyTest, pmem_path: str) -> list[str]:
        command = [self._mlc, "--idle_latency", f"-c{cpu}"]
        if test.random:
            command.append(f"-l{RANDOM_IDLE_STRIDE}")
        command.append(f"-J{pmem_path}")
        return command

    def bandwidth_command(self, workload: MlcWorkload) -> list[str]:
        command = [
            self._mlc,
            "--loaded_latency",
            "-d0",
            f"-o{self.perthread_path}",
            f"-t{self._sample_time}",
            "-T",
        ]
        if self._avx512 and workload.traffic == "W7":
            command.append("-Z")
        return command

    def loaded_latency_command(self, sweep: LoadedLatencySweep) -> list[str]:
        command = [
            self._mlc,
            "--loaded_latency",
            f"-g{self.delays_path}",
            f"-o{self.perthread_path}",
            f"-t{self._sample_time}",
        ]
        if sweep.random:
            command.append("-r")
        return command

    def run_idle_latency(self, cpu: int, test: IdleLatencyTest, pmem_path: str) -> str:
        return self._execute(self.idle_latency_command(cpu, test, pmem_path), test.output_name)

    def run_bandwidth(self, workload: MlcWorkload) -> str:
        self._write_perthread([workload.perthread_line()])
        try:
            return self._execute(self.bandwidth_command(workload), workload.output_name)
        finally:
            # cooldown time for MLC
            if self._cooldown_seconds > 0:
                time.sleep(self._cooldown_seconds)

    def run_loaded_latency(self, sweep: LoadedLatencySweep) -> str:
        self._write_perthread(sweep.perthread_lines())
        return self._execute(self.loaded_latency_command(sweep), sweep.output_name)

    def _write_perthread(self, lines: list[str]) -> None:
        LOGGER.debug("Per-thread configuration: %s", " | ".join(lines))
        self.perthread_path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")

    def _execute(self, command: list[str], output_name: str) -> str:
        output_path = self._output_dir / output_name
        LOGGER.debug("Running: %s > %s", " ".join(command), output_path)
        try:
            completed = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise ToolError(f"failed to execute {self._mlc}: {exc}") from exc

        output_path.write_text(completed.stdout, encoding="utf-8")
        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            raise ToolError(
                f"mlc returned error {completed.returncode} for {output_name}"
                + (f": {stderr}" if stderr else "")
            )
        return completed.stdout
