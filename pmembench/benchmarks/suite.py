from __future__ import annotations

import logging

from .collector import BenchmarkResultCollector, idle_latency_line
from .config import BenchmarkPlan
from .runner import MlcRunner

LOGGER = logging.getLogger("pmembench.benchmark")


def execute_plan(
    plan: BenchmarkPlan,
    runner: MlcRunner,
    collector: BenchmarkResultCollector,
    pmem_path: str,
) -> None:
    """Run every MLC test in the plan, one after another."""
    run_idle_latency(plan, runner, collector, pmem_path)
    run_bandwidth(plan, runner, collector)
    if plan.loaded_latency_sweeps:
        run_loaded_latency(plan, runner, collector)


def run_idle_latency(
    plan: BenchmarkPlan,
    runner: MlcRunner,
    collector: BenchmarkResultCollector,
    pmem_path: str,
) -> None:
    LOGGER.info("--- Idle Latency Tests ---")
    LOGGER.info("Using CPU %d", plan.latency_cpu)
    for test in plan.idle_tests:
        output = runner.run_idle_latency(plan.latency_cpu, test, pmem_path)
        collector.record_idle_latency(test, plan.latency_cpu, output)
        label = "sequential" if test.pattern == "seq" else "random"
        LOGGER.info(
            "PMem idle %s latency: %s", label, idle_latency_line(output) or "<not reported>"
        )
    LOGGER.info("--- End ---")


def run_bandwidth(
    plan: BenchmarkPlan,
    runner: MlcRunner,
    collector: BenchmarkResultCollector,
) -> None:
    if plan.ramp:
        LOGGER.info("--- Ramp-up Bandwidth Tests ---")
    else:
        LOGGER.info("--- Bandwidth Tests ---")
        LOGGER.info("Using CPUs: %s", plan.cpu_range)

    for workload in plan:
        LOGGER.debug("ramp_bandwidth: %s %s", workload.perthread_line(), workload.output_name)
        output = runner.run_bandwidth(workload)
        bandwidth = collector.record_bandwidth(workload, output)
        LOGGER.info(
            "max PMem bandwidth for %s (MiB/sec): %s",
            workload.output_name,
            f"{bandwidth:.1f}" if bandwidth is not None else "<not reported>",
        )
    LOGGER.info("--- End ---")


def run_loaded_latency(
    plan: BenchmarkPlan,
    runner: MlcRunner,
    collector: BenchmarkResultCollector,
) -> None:
    LOGGER.info("--- Loaded Latency Tests ---")
    for sweep in plan.loaded_latency_sweeps:
        label = "sequential" if sweep.pattern == "seq" else "random"
        output = runner.run_loaded_latency(sweep)
        points = collector.record_loaded_latency(sweep, output)
        LOGGER.info("PMem %s read loaded latency sweep:", label)
        LOGGER.info(" Delay    Latency nS         MBPS")
        for point in points:
            LOGGER.info(
                " %05d  %10.2f  %12.1f", point.delay, point.latency_ns, point.bandwidth_mb_s
            )
    LOGGER.info("--- End ---")


def describe_plan(plan: BenchmarkPlan, runner: MlcRunner, pmem_path: str) -> None:
    """Print each MLC invocation without running it."""
    print(f"Socket {plan.socket}: CPUs {plan.cpu_range}, latency CPU {plan.latency_cpu}")
    print("Idle latency:")
    for test in plan.idle_tests:
        command = runner.idle_latency_command(plan.latency_cpu, test, pmem_path)
        print(f"  - {test.output_name}: {' '.join(command)}")

    print("Ramp-up bandwidth:" if plan.ramp else "Bandwidth:")
    for workload in plan:
        print(
            f"  - {workload.output_name}: [{workload.perthread_line()}] "
            f"{' '.join(runner.bandwidth_command(workload))}"
        )

    if plan.loaded_latency_sweeps:
        print("Loaded latency:")
        for sweep in plan.loaded_latency_sweeps:
            print(
                f"  - {sweep.output_name}: [{' / '.join(sweep.perthread_lines())}] "
                f"{' '.join(runner.loaded_latency_command(sweep))}"
            )
