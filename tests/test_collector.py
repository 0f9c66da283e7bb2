from __future__ import annotations

import json

import pytest

from pmembench.benchmarks.collector import (
    BANDWIDTH_COLUMNS,
    LOADED_LATENCY_COLUMNS,
    BenchmarkResultCollector,
    idle_latency_line,
    parse_idle_latency,
    parse_loaded_latency,
    parse_peak_bandwidth,
)
from pmembench.benchmarks.config import IdleLatencyTest, MlcWorkload, loaded_latency_sweeps
from pmembench.dimms import DimmSummary

from .conftest import MLC_BANDWIDTH_OUTPUT, MLC_IDLE_OUTPUT, MLC_LOADED_LATENCY_OUTPUT


def test_parse_idle_latency():
    assert parse_idle_latency(MLC_IDLE_OUTPUT) == (402.5, 167.7)
    assert idle_latency_line(MLC_IDLE_OUTPUT).startswith("Each iteration took 402.5")
    assert parse_idle_latency("mlc: permission denied") is None


def test_parse_loaded_latency_table():
    points = parse_loaded_latency(MLC_LOADED_LATENCY_OUTPUT)
    assert [point.delay for point in points] == [0, 50, 100, 80000]
    assert points[0].latency_ns == pytest.approx(812.40)
    assert points[-1].bandwidth_mb_s == pytest.approx(412.9)


def test_parse_loaded_latency_without_separator():
    assert parse_loaded_latency("Inject Latency Bandwidth\n 00000 1.0 2.0\n") == []


def test_parse_peak_bandwidth():
    assert parse_peak_bandwidth(MLC_BANDWIDTH_OUTPUT) == pytest.approx(12345.6)
    assert parse_peak_bandwidth("") is None


def test_empty_collector_has_typed_columns():
    collector = BenchmarkResultCollector()
    df = collector.bandwidth_dataframe()
    assert df.empty
    assert list(df.columns) == BANDWIDTH_COLUMNS


def test_collector_tables_and_manifest(tmp_path):
    collector = BenchmarkResultCollector()
    collector.record_idle_latency(IdleLatencyTest("seq", "idle_seq.txt"), 0, MLC_IDLE_OUTPUT)
    workload = MlcWorkload("0-3", "R", "seq", 400000, "/pmemfs0", "bw_seq_READ.txt")
    assert collector.record_bandwidth(workload, MLC_BANDWIDTH_OUTPUT) == pytest.approx(12345.6)
    sweep, _ = loaded_latency_sweeps(0, "1-3", "/pmemfs0")
    collector.record_loaded_latency(sweep, MLC_LOADED_LATENCY_OUTPUT)

    bandwidth = collector.bandwidth_dataframe()
    assert bandwidth.loc[0, "test"] == "bw_seq_READ"
    assert bandwidth.loc[0, "bandwidth_mib_s"] == pytest.approx(12345.6)
    assert len(collector.loaded_latency_dataframe()) == 4
    assert collector.idle_dataframe().loc[0, "latency_ns"] == pytest.approx(167.7)

    summary = DimmSummary(count=2, capacity_gib=256, dimm_type="DDP", avg_power_budget_mw=15000, power_class="15W")
    manifest_path = collector.save(tmp_path, metadata={"socket": 0, "dimms": summary})

    manifest = json.loads(manifest_path.read_text())
    assert manifest["metadata"]["dimms"]["dimm_type"] == "DDP"
    assert manifest["tables"]["bandwidth"] == {"path": "bandwidth.csv", "rows": 1}
    assert manifest["tables"]["loaded_latency"]["rows"] == 4
    assert (tmp_path / "idle_latency.csv").exists()


def test_collector_writes_header_only_tables(tmp_path):
    collector = BenchmarkResultCollector()
    workload = MlcWorkload("0-3", "R", "seq", 400000, "/pmemfs0", "bw_seq_READ.txt")
    collector.record_bandwidth(workload, MLC_BANDWIDTH_OUTPUT)
    manifest = json.loads(collector.save(tmp_path).read_text())
    assert list(manifest["tables"]) == ["idle_latency", "bandwidth", "loaded_latency"]
    assert manifest["tables"]["loaded_latency"]["rows"] == 0
    header = (tmp_path / "loaded_latency.csv").read_text().strip()
    assert header.split(",") == LOADED_LATENCY_COLUMNS
