from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from .config import IdleLatencyTest, LoadedLatencySweep, MlcWorkload

LOGGER = logging.getLogger("pmembench.benchmark.collector")

RESULTS_SEPARATOR = "=========================="
IDLE_LATENCY_RE = re.compile(
    r"Each iteration took\s+([0-9.]+)\s+.*?clocks\s*\(\s*([0-9.]+)\s*ns\s*\)"
)
IDLE_LATENCY_LINE_RE = re.compile(r"Each iteration took.*")

IDLE_COLUMNS = ["test", "pattern", "cpu", "clocks", "latency_ns", "output_file"]
BANDWIDTH_COLUMNS = [
    "test",
    "cpus",
    "cpu_count",
    "traffic",
    "pattern",
    "buffer_kib",
    "bandwidth_mib_s",
    "output_file",
]
LOADED_LATENCY_COLUMNS = [
    "test",
    "pattern",
    "delay_ns",
    "latency_ns",
    "bandwidth_mb_s",
    "output_file",
]


@dataclass(frozen=True)
class LoadedLatencyPoint:
    delay: int
    latency_ns: float
    bandwidth_mb_s: float


def parse_idle_latency(text: str) -> tuple[float, float] | None:
    """Return (clocks, ns) from MLC idle latency output."""
    match = IDLE_LATENCY_RE.search(text)
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def idle_latency_line(text: str) -> str | None:
    match = IDLE_LATENCY_LINE_RE.search(text)
    return match.group(0).strip() if match else None


def parse_loaded_latency(text: str) -> list[LoadedLatencyPoint]:
    """Read the delay/latency/bandwidth table MLC prints after its separator line."""
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if RESULTS_SEPARATOR in line:
            table = lines[index + 1:]
            break
    else:
        return []

    points: list[LoadedLatencyPoint] = []
    for line in table:
        tokens = line.split()
        if len(tokens) < 3:
            continue
        try:
            points.append(
                LoadedLatencyPoint(
                    delay=int(tokens[0]),
                    latency_ns=float(tokens[1]),
                    bandwidth_mb_s=float(tokens[2]),
                )
            )
        except ValueError:
            continue
    return points


def parse_peak_bandwidth(text: str) -> float | None:
    points = parse_loaded_latency(text)
    return points[0].bandwidth_mb_s if points else None


class BenchmarkResultCollector:
    """Accumulates scraped MLC values and turns them into tables."""

    def __init__(self) -> None:
        self._idle: list[dict[str, Any]] = []
        self._bandwidth: list[dict[str, Any]] = []
        self._loaded_latency: list[dict[str, Any]] = []

    def record_idle_latency(self, test: IdleLatencyTest, cpu: int, text: str) -> tuple[float, float] | None:
        parsed = parse_idle_latency(text)
        clocks, latency_ns = parsed if parsed else (None, None)
        self._idle.append(
            {
                "test": test.output_name.rsplit(".", 1)[0],
                "pattern": test.pattern,
                "cpu": cpu,
                "clocks": clocks,
                "latency_ns": latency_ns,
                "output_file": test.output_name,
            }
        )
        return parsed

    def record_bandwidth(self, workload: MlcWorkload, text: str) -> float | None:
        bandwidth = parse_peak_bandwidth(text)
        self._bandwidth.append(
            {
                "test": workload.output_name.rsplit(".", 1)[0],
                "cpus": workload.cpus,
                "cpu_count": workload.cpu_count,
                "traffic": workload.traffic,
                "pattern": workload.pattern,
                "buffer_kib": workload.buffer_kib,
                "bandwidth_mib_s": bandwidth,
                "output_file": workload.output_name,
            }
        )
        return bandwidth

    def record_loaded_latency(self, sweep: LoadedLatencySweep, text: str) -> list[LoadedLatencyPoint]:
        points = parse_loaded_latency(text)
        for point in points:
            self._loaded_latency.append(
                {
                    "test": sweep.output_name.rsplit(".", 1)[0],
                    "pattern": sweep.pattern,
                    "delay_ns": point.delay,
                    "latency_ns": point.latency_ns,
                    "bandwidth_mb_s": point.bandwidth_mb_s,
                    "output_file": sweep.output_name,
                }
            )
        return points

    def idle_dataframe(self) -> pd.DataFrame:
        return _frame(self._idle, IDLE_COLUMNS)

    def bandwidth_dataframe(self) -> pd.DataFrame:
        return _frame(self._bandwidth, BANDWIDTH_COLUMNS)

    def loaded_latency_dataframe(self) -> pd.DataFrame:
        return _frame(self._loaded_latency, LOADED_LATENCY_COLUMNS)

    def save(self, output_dir: Path, metadata: dict[str, Any] | None = None) -> Path:
        """Write the CSV tables and a JSON manifest describing the run."""
        tables = {
            "idle_latency": self.idle_dataframe(),
            "bandwidth": self.bandwidth_dataframe(),
            "loaded_latency": self.loaded_latency_dataframe(),
        }
        manifest: dict[str, Any] = {"metadata": metadata or {}, "tables": {}}
        for name, df in tables.items():
            csv_path = output_dir / f"{name}.csv"
            df.to_csv(csv_path, index=False)
            manifest["tables"][name] = {"path": csv_path.name, "rows": len(df)}
            LOGGER.info("Saved %s results to %s (%d rows)", name, csv_path, len(df))

        manifest_path = output_dir / "benchmark_manifest.json"
        with open(manifest_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, default=_json_default)
        LOGGER.info("Benchmark manifest written to %s", manifest_path)
        return manifest_path


def _frame(rows: list[dict[str, Any]], columns: list[str]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns)


def _json_default(value: Any) -> Any:
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)
    return str(value)
