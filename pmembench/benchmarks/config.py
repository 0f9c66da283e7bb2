from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from ..topology import CpuTopology, ramp_cpu_ranges

# Injection delays used for loaded latency (to vary demand bandwidth)
INJECTION_DELAYS: tuple[int, ...] = (
    0, 50, 100, 200, 300, 400, 500, 700, 850, 1000,
    1150, 1300, 1500, 1700, 2500, 3500, 5000, 20000, 40000, 80000,
)

DEFAULT_BUFFER_KIB = 400_000
DEFAULT_SAMPLE_TIME = 15
DEFAULT_COOLDOWN_SECONDS = 3.0

# MLC -W<n> traffic types, as observed on the memory controller
TRAFFIC_TYPES: dict[str, str] = {
    "R": "100% reads",
    "W2": "2 reads and 1 write",
    "W3": "3 reads and 1 write",
    "W5": "1 read and 1 write",
    "W6": "100% non-temporal write",
    "W7": "2 reads and 1 non-temporal write",
    "W8": "1 read and 1 non-temporal write",
    "W9": "3 reads and 1 non-temporal write",
    "W10": "2 reads and 1 non-temporal write, separate buffers (stream triad)",
    "W11": "3 reads and 1 write, separate buffers",
    "W12": "4 reads and 1 write",
}

PATTERN_ABBREVIATIONS: dict[str, str] = {"seq": "seq", "rand": "rnd"}

# (traffic, file suffix) for the fixed bandwidth matrix
BANDWIDTH_TRAFFIC: tuple[tuple[str, str], ...] = (
    ("R", "READ"),
    ("W6", "WRITE_NT"),
    ("W7", "2READ_1WRITE_NT"),
    ("W5", "1READ_1WRITE"),
    ("W2", "2READ_1WRITE"),
)

RAMP_TRAFFIC: tuple[str, ...] = ("R", "W2")
PATTERNS: tuple[str, ...] = ("seq", "rand")


@dataclass(frozen=True)
class MlcWorkload:
    """One line of an MLC per-thread configuration file plus where its output goes."""

    cpus: str
    traffic: str
    pattern: str
    buffer_kib: int
    path: str
    output_name: str
    target: str = "pmem"
    cpu_count: int | None = None

    def perthread_line(self) -> str:
        return " ".join(
            [self.cpus, self.traffic, self.pattern, str(self.buffer_kib), self.target, self.path]
        )


@dataclass(frozen=True)
class IdleLatencyTest:
    pattern: str
    output_name: str

    @property
    def random(self) -> bool:
        return self.pattern == "rand"


@dataclass(frozen=True)
class LoadedLatencySweep:
    """Latency measured on one CPU while the others generate bandwidth."""

    pattern: str
    latency_cpu: int
    bandwidth_cpus: str
    buffer_kib: int
    path: str
    output_name: str
    traffic: str = "R"

    @property
    def random(self) -> bool:
        return self.pattern == "rand"

    def perthread_lines(self) -> list[str]:
        return [
            MlcWorkload(
                str(self.latency_cpu), self.traffic, self.pattern, self.buffer_kib, self.path, ""
            ).perthread_line(),
            MlcWorkload(
                self.bandwidth_cpus, self.traffic, self.pattern, self.buffer_kib, self.path, ""
            ).perthread_line(),
        ]


@dataclass(frozen=True)
class PlanOptions:
    pmem_path: str
    socket: int = 0
    buffer_kib: int = DEFAULT_BUFFER_KIB
    ramp_bandwidth: bool = False
    loaded_latency: bool = False
    one_thread_per_core: bool = False


@dataclass
class BenchmarkPlan:
    """Everything the suite will hand to MLC, in execution order."""

    socket: int
    latency_cpu: int
    cpu_range: str
    idle_tests: list[IdleLatencyTest] = field(default_factory=list)
    bandwidth_workloads: list[MlcWorkload] = field(default_factory=list)
    ramp: bool = False
    loaded_latency_sweeps: list[LoadedLatencySweep] = field(default_factory=list)

    def __iter__(self) -> Iterator[MlcWorkload]:
        return iter(self.bandwidth_workloads)


def idle_latency_tests() -> list[IdleLatencyTest]:
    return [
        IdleLatencyTest(pattern="seq", output_name="idle_seq.txt"),
        IdleLatencyTest(pattern="rand", output_name="idle_rnd.txt"),
    ]


def bandwidth_matrix(cpu_range: str, path: str, buffer_kib: int = DEFAULT_BUFFER_KIB) -> list[MlcWorkload]:
    """Fixed traffic/pattern matrix run across every CPU of the socket."""
    return [
        MlcWorkload(
            cpus=cpu_range,
            traffic=traffic,
            pattern=pattern,
            buffer_kib=buffer_kib,
            path=path,
            output_name=f"bw_{PATTERN_ABBREVIATIONS[pattern]}_{suffix}.txt",
        )
        for traffic, suffix in BANDWIDTH_TRAFFIC
        for pattern in PATTERNS
    ]


def ramp_workloads(
    cpu_ranges: Iterable[tuple[int, str]],
    path: str,
    buffer_kib: int = DEFAULT_BUFFER_KIB,
    traffic_types: Sequence[str] = RAMP_TRAFFIC,
) -> list[MlcWorkload]:
    return [
        MlcWorkload(
            cpus=cpu_range,
            traffic=traffic,
            pattern=pattern,
            buffer_kib=buffer_kib,
            path=path,
            output_name=f"bw_{pattern}_{traffic}_{cpu_count}CPU.txt",
            cpu_count=cpu_count,
        )
        for cpu_count, cpu_range in cpu_ranges
        for traffic in traffic_types
        for pattern in PATTERNS
    ]


def loaded_latency_sweeps(
    latency_cpu: int, cpu_range: str, path: str, buffer_kib: int = DEFAULT_BUFFER_KIB
) -> list[LoadedLatencySweep]:
    return [
        LoadedLatencySweep(
            pattern=pattern,
            latency_cpu=latency_cpu,
            bandwidth_cpus=cpu_range,
            buffer_kib=buffer_kib,
            path=path,
            output_name=f"out_llat_{PATTERN_ABBREVIATIONS[pattern]}_READ.txt",
        )
        for pattern in PATTERNS
    ]


def build_plan(options: PlanOptions, topology: CpuTopology) -> BenchmarkPlan:
    cpu_range = topology.cpu_range(options.socket)
    latency_cpu = topology.first_cpu(options.socket)

    if options.ramp_bandwidth:
        ranges = ramp_cpu_ranges(
            topology.socket_cpus(options.socket),
            topology.require_cores_per_socket(),
            topology.require_threads_per_core(),
            one_thread_per_core=options.one_thread_per_core,
        )
        workloads = ramp_workloads(ranges, options.pmem_path, options.buffer_kib)
    else:
        workloads = bandwidth_matrix(cpu_range, options.pmem_path, options.buffer_kib)

    sweeps: list[LoadedLatencySweep] = []
    if options.loaded_latency:
        sweeps = loaded_latency_sweeps(latency_cpu, cpu_range, options.pmem_path, options.buffer_kib)

    return BenchmarkPlan(
        socket=options.socket,
        latency_cpu=latency_cpu,
        cpu_range=cpu_range,
        idle_tests=idle_latency_tests(),
        bandwidth_workloads=workloads,
        ramp=options.ramp_bandwidth,
        loaded_latency_sweeps=sweeps,
    )
