from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

LOGGER = logging.getLogger("pmembench.system")

MOUNTS_PATH = Path("/proc/self/mounts")
OS_RELEASE_PATH = Path("/etc/os-release")
AUXILIARY_COMMANDS: tuple[str, ...] = ("numactl", "lscpu")
RESULT_MARKERS: tuple[str, ...] = ("delays.txt", "PMem_perthread.txt", "benchmark_manifest.json")


class PmemBenchError(Exception):
    """Raised when a pre-flight check or a benchmark step cannot continue."""


class ToolError(PmemBenchError):
    """Raised when an external command is missing or fails."""


def run_command(args: Sequence[str], check: bool = True) -> str:
    """Run an external command and return its stdout as text."""
    LOGGER.debug("Running: %s", " ".join(str(arg) for arg in args))
    try:
        completed = subprocess.run(
            [str(arg) for arg in args],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise ToolError(f"failed to execute {args[0]}: {exc}") from exc

    if check and completed.returncode != 0:
        stderr = completed.stderr.strip()
        raise ToolError(
            f"'{' '.join(str(arg) for arg in args)}' returned error {completed.returncode}"
            + (f": {stderr}" if stderr else "")
        )
    return completed.stdout


def is_executable(path: str | os.PathLike[str] | None) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


@dataclass
class Toolchain:
    mlc: str | None
    ndctl: str | None
    ipmctl: str | None
    numactl: str | None = field(default_factory=lambda: shutil.which("numactl"))
    lscpu: str | None = field(default_factory=lambda: shutil.which("lscpu"))
    versions: dict[str, str] = field(default_factory=dict)


def verify_toolchain(tools: Toolchain, avx512: bool) -> Toolchain:
    """Check every binary the run needs and record the versions we can read."""
    problems: list[str] = []

    if not is_executable(tools.mlc):
        problems.append("mlc command not found! Use -m to specify the path.")
    else:
        LOGGER.info("Using MLC command: %s", tools.mlc)
        tools.versions["mlc"] = mlc_version(tools.mlc)
        LOGGER.info("MLC version: %s", tools.versions["mlc"])
    LOGGER.info("Using MLC AVX512: %s", "Yes" if avx512 else "No")

    if not is_executable(tools.ndctl):
        problems.append("ndctl command not found! Use -n to specify the path.")
    else:
        LOGGER.info("Using NDCTL command: %s", tools.ndctl)
        tools.versions["ndctl"] = run_command([tools.ndctl, "-v"], check=False).strip()
        LOGGER.info("NDCTL version: %s", tools.versions["ndctl"])

    if not is_executable(tools.ipmctl):
        problems.append("ipmctl command not found! Use -i to specify the path.")
    else:
        LOGGER.info("Using IPMCTL command: %s", tools.ipmctl)
        tools.versions["ipmctl"] = ipmctl_version(tools.ipmctl)
        LOGGER.info("IPMCTL version: %s", tools.versions["ipmctl"])

    for name in AUXILIARY_COMMANDS:
        if not is_executable(getattr(tools, name)):
            problems.append(f"{name} command not found! Please install the {name} package.")

    if problems:
        for problem in problems:
            LOGGER.error("%s", problem)
        raise ToolError("required commands are missing or not executable")
    return tools


def mlc_version(mlc: str) -> str:
    # "Intel(R) Memory Latency Checker - v3.9a"
    output = _combined_output([mlc, "--version"])
    lines = output.splitlines()
    tokens = lines[0].split() if lines else []
    return tokens[5] if len(tokens) > 5 else "unknown"


def ipmctl_version(ipmctl: str) -> str:
    tokens = _combined_output([ipmctl, "version"]).split()
    return tokens[-1] if tokens else "unknown"


def _combined_output(args: Sequence[str]) -> str:
    try:
        completed = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise ToolError(f"failed to execute {args[0]}: {exc}") from exc
    return completed.stdout


@dataclass(frozen=True)
class MountInfo:
    device: str
    mount_point: str
    fs_type: str
    options: tuple[str, ...]

    @property
    def dax(self) -> bool:
        return any(option == "dax" or option.startswith("dax=") for option in self.options)


def parse_mounts(text: str) -> list[MountInfo]:
    mounts: list[MountInfo] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        mounts.append(
            MountInfo(
                device=parts[0],
                mount_point=_unescape_mount_field(parts[1]),
                fs_type=parts[2],
                options=tuple(parts[3].split(",")),
            )
        )
    return mounts


def find_mount(path: str | os.PathLike[str], mounts_path: Path = MOUNTS_PATH) -> MountInfo | None:
    target = os.path.abspath(str(path))
    found = None
    for mount in parse_mounts(mounts_path.read_text()):
        if mount.mount_point == target:
            # later entries shadow earlier ones
            found = mount
    return found


def _unescape_mount_field(value: str) -> str:
    return (
        value.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def os_pretty_name(os_release_path: Path = OS_RELEASE_PATH) -> str | None:
    if not os_release_path.is_file():
        return None
    for line in os_release_path.read_text().splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "PRETTY_NAME":
            return value.strip().strip('"')
    return None


def collect_sysinfo(pmem_path: str, mounts_path: Path = MOUNTS_PATH) -> MountInfo | None:
    """Report what we know about the pmem mount and the host OS."""
    LOGGER.info("Using pmem file system: %s", pmem_path)
    mount = find_mount(pmem_path, mounts_path)
    if mount is None:
        LOGGER.error("%s is not a mounted file system.", pmem_path)
        LOGGER.error(
            "Create a dax supporting filesystem on the namespace and mount it to %s",
            pmem_path,
        )
    else:
        if not mount.dax:
            LOGGER.warning("Mounted filesystem doesn't support DAX")
        LOGGER.info("%s file system type: %s", pmem_path, mount.fs_type)

    pretty_name = os_pretty_name()
    if pretty_name:
        LOGGER.info("Operating System: %s", pretty_name)
    return mount


def is_results_dir(path: Path) -> bool:
    return any((path / name).exists() for name in RESULT_MARKERS)


def init_output_dir(output_dir: Path, delays: Iterable[int]) -> Path:
    """Recreate the results directory and write the injection delay list.

    An existing directory is only removed when it is empty or holds the
    results of a previous run.
    """
    if output_dir.exists():
        if not output_dir.is_dir():
            raise PmemBenchError(f"{output_dir} exists and is not a directory")
        if any(output_dir.iterdir()) and not is_results_dir(output_dir):
            raise PmemBenchError(
                f"{output_dir} is not empty and does not look like a pmembench results "
                "directory. Choose another output directory with -o."
            )
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True)

    delays_file = output_dir / "delays.txt"
    delays_file.write_text("".join(f"{delay}\n" for delay in delays), encoding="utf-8")
    return delays_file
