from __future__ import annotations

import argparse
import contextlib
import datetime
import logging
import os
import shutil
import sys
import time
from pathlib import Path

from . import __version__
from .benchmarks.charts import render_charts
from .benchmarks.collector import BenchmarkResultCollector
from .benchmarks.config import (
    DEFAULT_BUFFER_KIB,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_SAMPLE_TIME,
    INJECTION_DELAYS,
    PlanOptions,
    build_plan,
)
from .benchmarks.runner import MlcRunner
from .benchmarks.suite import describe_plan, execute_plan
from .dimms import count_namespace_dimms, firmware_report, save_dimm_info, validate_dimms
from .system import (
    PmemBenchError,
    ToolError,
    Toolchain,
    collect_sysinfo,
    init_output_dir,
    verify_toolchain,
)
from .topology import discover_topology

LOGGER = logging.getLogger("pmembench")

MAX_VERBOSITY = 3
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILENAME = "pmembench.log"
BANNER = "=" * 71


def default_output_dir() -> str:
    return f"./mlc-outputs.{datetime.datetime.now():%m%d-%H%M}"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(
        prog="pmembench",
        description=(
            "Runs bandwidth and latency tests on PMem backed PMEM memory using MLC. "
            "Run with root privilege (MLC needs it)."
        ),
    )
    parser.add_argument(
        "-a",
        "--avx512",
        type=int,
        choices=(0, 1),
        default=int(env.get("PMEMBENCH_AVX512", "1")),
        help="1 enables the AVX_512 option (default), 0 disables it for the non-AVX512 MLC build",
    )
    parser.add_argument(
        "-i",
        "--ipmctl",
        default=env.get("PMEMBENCH_IPMCTL") or shutil.which("ipmctl"),
        help="Path to the IPMCTL executable",
    )
    parser.add_argument(
        "-l",
        "--loaded-latency",
        action="store_true",
        help="Perform loaded latency bandwidth testing using increasing injected delays",
    )
    parser.add_argument(
        "-m",
        "--mlc",
        default=env.get("PMEMBENCH_MLC") or shutil.which("mlc"),
        help="Path to the MLC executable",
    )
    parser.add_argument(
        "-n",
        "--ndctl",
        default=env.get("PMEMBENCH_NDCTL") or shutil.which("ndctl"),
        help="Path to the NDCTL executable",
    )
    parser.add_argument(
        "-p",
        "--pmem-path",
        default=env.get("PMEMBENCH_PMEM_PATH", "/pmemfs0"),
        help="Path to the mounted PMEM directory (default: %(default)s)",
    )
    parser.add_argument(
        "-r",
        "--ramp-bandwidth",
        action="store_true",
        help="Perform ramp-up bandwidth testing using incremental numbers of CPUs per test",
    )
    parser.add_argument(
        "-s",
        "--socket",
        type=int,
        default=int(env.get("PMEMBENCH_SOCKET", "0")),
        help="CPU socket used to run mlc (default: %(default)s)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Print verbose output. Use -v, -vv, and -vvv to increase verbosity",
    )
    parser.add_argument(
        "-X",
        dest="one_thread_per_core",
        action="store_true",
        help="For ramp-up bandwidth tests use only one thread on each core",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        default=env.get("PMEMBENCH_OUTPUT_DIR") or default_output_dir(),
        help="Directory for test results; it is recreated on every run",
    )
    parser.add_argument(
        "-t",
        "--sample-time",
        type=int,
        default=int(env.get("PMEMBENCH_SAMPLE_TIME", str(DEFAULT_SAMPLE_TIME))),
        help="MLC sample time in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--buffer-size",
        type=int,
        default=int(env.get("PMEMBENCH_BUFFER_KIB", str(DEFAULT_BUFFER_KIB))),
        help="Per-thread buffer size in KiB (default: %(default)s)",
    )
    parser.add_argument(
        "--cooldown",
        type=float,
        default=float(env.get("PMEMBENCH_COOLDOWN_SECONDS", str(DEFAULT_COOLDOWN_SECONDS))),
        help="Seconds to pause between bandwidth runs (default: %(default)s)",
    )
    parser.add_argument(
        "--dimms",
        type=int,
        default=None,
        help="Number of PMem devices in the namespace when it cannot be detected",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip rendering PNG charts of the results",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned MLC invocations without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=env.get("PMEMBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    args.verbose = min(args.verbose, MAX_VERBOSITY)
    return args


def setup_logging(level: str, verbosity: int) -> None:
    if verbosity >= MAX_VERBOSITY:
        resolved = logging.DEBUG
    else:
        resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    LOGGER.setLevel(resolved)


def configure_file_logging(log_path: Path, stack: contextlib.ExitStack) -> logging.Handler:
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    LOGGER.addHandler(handler)
    stack.callback(handler.close)
    stack.callback(LOGGER.removeHandler, handler)
    return handler


def display_test_start_info(started_at: float) -> None:
    print(BANNER)
    print("Starting Intel PMem bandwidth and latency measurements using MLC")
    print(f"pmembench Version {__version__}")
    print(f"Test Started: {time.ctime(started_at)}")
    print(BANNER)


def display_test_end_info(started_at: float, output_dir: Path) -> None:
    ended_at = time.time()
    print(BANNER)
    print("Intel PMem bandwidth and latency measurements Complete")
    print(f"Test Ended: {time.ctime(ended_at)}")
    print(f"Test Duration: {int(ended_at - started_at)} seconds")
    print(f"Test results: {output_dir}")
    print(BANNER)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, args.verbose)

    started_at = time.time()
    output_dir = Path(args.output_dir)
    display_test_start_info(started_at)

    try:
        with contextlib.ExitStack() as stack:
            if args.dry_run:
                return _dry_run(args)
            _benchmark(args, output_dir, stack)
    except KeyboardInterrupt:
        LOGGER.info("Received CTRL+C - aborting")
        display_test_end_info(started_at, output_dir)
        return 1
    except PmemBenchError as exc:
        LOGGER.error("%s", exc)
        LOGGER.error("Exiting due to previous error(s)")
        return 1

    display_test_end_info(started_at, output_dir)
    return 0


def _plan_options(args: argparse.Namespace) -> PlanOptions:
    return PlanOptions(
        pmem_path=args.pmem_path,
        socket=args.socket,
        buffer_kib=args.buffer_size,
        ramp_bandwidth=args.ramp_bandwidth,
        loaded_latency=args.loaded_latency,
        one_thread_per_core=args.one_thread_per_core,
    )


def _dry_run(args: argparse.Namespace) -> int:
    tools = Toolchain(mlc=args.mlc, ndctl=args.ndctl, ipmctl=args.ipmctl)
    if not tools.lscpu or not tools.numactl:
        raise ToolError("lscpu and numactl are required to plan the benchmark")
    topology = discover_topology(tools.lscpu, tools.numactl)
    topology.verify_socket(args.socket)
    plan = build_plan(_plan_options(args), topology)
    runner = MlcRunner(
        mlc=args.mlc or "mlc",
        output_dir=Path(args.output_dir),
        sample_time=args.sample_time,
        avx512=bool(args.avx512),
        cooldown_seconds=args.cooldown,
    )
    describe_plan(plan, runner, args.pmem_path)
    return 0


def _benchmark(args: argparse.Namespace, output_dir: Path, stack: contextlib.ExitStack) -> None:
    if os.geteuid() != 0:
        raise PmemBenchError(
            "Please run this script with root privilege or use -h to display help information."
        )

    tools = verify_toolchain(
        Toolchain(mlc=args.mlc, ndctl=args.ndctl, ipmctl=args.ipmctl),
        avx512=bool(args.avx512),
    )
    topology = discover_topology(tools.lscpu, tools.numactl)
    topology.verify_socket(args.socket)

    LOGGER.info("Test results: %s", output_dir)
    mount = collect_sysinfo(args.pmem_path)
    init_output_dir(output_dir, INJECTION_DELAYS)
    configure_file_logging(output_dir / LOG_FILENAME, stack)

    LOGGER.info("CPU cores per socket: %d", topology.require_cores_per_socket())
    LOGGER.info("CPUs on Socket %d: %s", args.socket, topology.cpu_range(args.socket))
    LOGGER.debug("verify_hyperthreading: CPU Hyperthreading = %s", topology.hyperthreading)

    dimm_summary = validate_dimms(save_dimm_info(tools.ipmctl, output_dir / "dimm_info.dat"))
    namespace_dimms = count_namespace_dimms(
        mount,
        ndctl=tools.ndctl,
        ipmctl=tools.ipmctl,
        socket=args.socket,
        override=args.dimms,
    )
    LOGGER.info("Intel PMem Firmware versions:\n%s", firmware_report(tools.ipmctl).rstrip())

    plan = build_plan(_plan_options(args), topology)
    runner = MlcRunner(
        mlc=tools.mlc,
        output_dir=output_dir,
        sample_time=args.sample_time,
        avx512=bool(args.avx512),
        cooldown_seconds=args.cooldown,
    )
    collector = BenchmarkResultCollector()
    execute_plan(plan, runner, collector, args.pmem_path)

    collector.save(
        output_dir,
        metadata={
            "version": __version__,
            "pmem_path": args.pmem_path,
            "socket": args.socket,
            "cpu_range": plan.cpu_range,
            "namespace_dimms": namespace_dimms,
            "dimms": dimm_summary,
            "tools": tools.versions,
            "sample_time": args.sample_time,
            "avx512": bool(args.avx512),
        },
    )
    if not args.no_charts:
        render_charts(
            collector.bandwidth_dataframe(),
            collector.loaded_latency_dataframe(),
            output_dir,
            ramp=plan.ramp,
        )


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
