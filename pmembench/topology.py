from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator

from .system import PmemBenchError, run_command

LOGGER = logging.getLogger("pmembench.topology")

NUMA_NODE_CPUS_RE = re.compile(r"^node\s+(\d+)\s+cpus:(.*)$")
LSCPU_NUMA_RANGE_RE = re.compile(r"^NUMA node(\d+) CPU\(s\)$")


class TopologyError(PmemBenchError):
    """Raised when the CPU or NUMA layout cannot be identified."""


def parse_lscpu(text: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        fields[key.strip()] = value.strip()
    return fields


def parse_numactl_hardware(text: str) -> dict[int, list[int]]:
    nodes: dict[int, list[int]] = {}
    for line in text.splitlines():
        match = NUMA_NODE_CPUS_RE.match(line.strip())
        if not match:
            continue
        nodes[int(match.group(1))] = [int(cpu) for cpu in match.group(2).split()]
    return nodes


@dataclass
class CpuTopology:
    """CPU layout of the host as reported by lscpu and numactl."""

    sockets: int | None
    cores_per_socket: int | None
    threads_per_core: int | None
    numa_cpu_ranges: dict[int, str] = field(default_factory=dict)
    numa_cpus: dict[int, list[int]] = field(default_factory=dict)

    @classmethod
    def from_outputs(cls, lscpu_text: str, numactl_text: str) -> "CpuTopology":
        fields = parse_lscpu(lscpu_text)
        ranges: dict[int, str] = {}
        for key, value in fields.items():
            match = LSCPU_NUMA_RANGE_RE.match(key)
            if match and value:
                ranges[int(match.group(1))] = value
        return cls(
            sockets=_optional_int(fields.get("Socket(s)")),
            cores_per_socket=_optional_int(fields.get("Core(s) per socket")),
            threads_per_core=_optional_int(fields.get("Thread(s) per core")),
            numa_cpu_ranges=ranges,
            numa_cpus=parse_numactl_hardware(numactl_text),
        )

    @property
    def hyperthreading(self) -> bool:
        return self.require_threads_per_core() > 1

    def verify_socket(self, socket: int) -> None:
        if self.sockets is None:
            raise TopologyError(
                "verify_cpu_socket: Could not identify the number of sockets in this system."
            )
        if socket < 0 or socket >= self.sockets:
            raise TopologyError(
                f"Socket {socket} does not exist in this system. "
                f"Valid sockets are 0-{self.sockets - 1}."
            )

    def require_cores_per_socket(self) -> int:
        if self.cores_per_socket is None:
            raise TopologyError(
                "get_cpu_cores_per_socket: Could not identify cpu cores per socket."
            )
        return self.cores_per_socket

    def require_threads_per_core(self) -> int:
        if self.threads_per_core is None:
            raise TopologyError(
                "get_cpu_threads_per_core: Could not identify cpu threads per core."
            )
        return self.threads_per_core

    def cpu_range(self, socket: int) -> str:
        cpu_range = self.numa_cpu_ranges.get(socket)
        if not cpu_range:
            raise TopologyError(
                f"get_cpu_range_per_socket: Could not identify cpu range for socket {socket}."
            )
        return cpu_range

    def socket_cpus(self, socket: int) -> list[int]:
        cpus = self.numa_cpus.get(socket)
        if not cpus:
            raise TopologyError(
                f"get_first_cpu_in_socket: Could not identify cpus for numa node {socket}."
            )
        return cpus

    def first_cpu(self, socket: int) -> int:
        return self.socket_cpus(socket)[0]


def discover_topology(lscpu: str, numactl: str) -> CpuTopology:
    topology = CpuTopology.from_outputs(
        run_command([lscpu]),
        run_command([numactl, "--hardware"]),
    )
    LOGGER.debug(
        "Topology: sockets=%s cores/socket=%s threads/core=%s",
        topology.sockets,
        topology.cores_per_socket,
        topology.threads_per_core,
    )
    return topology


def ramp_cpu_ranges(
    numa_cpus: list[int],
    cores_per_socket: int,
    threads_per_core: int,
    one_thread_per_core: bool = False,
) -> Iterator[tuple[int, str]]:
    """Yield (cpu_count, mlc cpu range) pairs for an incremental bandwidth ramp.

    numactl lists the first hardware thread of every core before the sibling
    threads, so once the ramp passes the physical core count the range is
    split into all cores plus the siblings used so far.
    """
    if one_thread_per_core:
        max_cpus = cores_per_socket
    else:
        max_cpus = cores_per_socket * threads_per_core
    max_cpus = min(max_cpus, len(numa_cpus))
    if max_cpus <= 0:
        return

    indices = [index for index in (0, 1) if index < max_cpus]
    indices.extend(range(3, max_cpus, 2))
    if indices[-1] != max_cpus - 1:
        indices.append(max_cpus - 1)

    first = numa_cpus[0]
    for index in indices:
        if index >= cores_per_socket:
            cpu_range = (
                f"{first}-{numa_cpus[cores_per_socket - 1]},"
                f"{numa_cpus[cores_per_socket]}-{numa_cpus[index]}"
            )
        else:
            cpu_range = f"{first}-{numa_cpus[index]}"
        LOGGER.debug("ramp_bandwidth: CPU=%d, TEST_CPU_RANGE = '%s'", index, cpu_range)
        yield index + 1, cpu_range


def _optional_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.split()[0])
    except (ValueError, IndexError):
        return None
