from __future__ import annotations

from pmembench.benchmarks.config import (
    INJECTION_DELAYS,
    MlcWorkload,
    PlanOptions,
    bandwidth_matrix,
    build_plan,
    loaded_latency_sweeps,
    ramp_workloads,
)


def test_injection_delays_are_increasing():
    assert INJECTION_DELAYS[0] == 0
    assert INJECTION_DELAYS[-1] == 80000
    assert len(INJECTION_DELAYS) == 20
    assert list(INJECTION_DELAYS) == sorted(INJECTION_DELAYS)


def test_perthread_line():
    workload = MlcWorkload("0-3,8-11", "W6", "rand", 400000, "/pmemfs0", "bw_rnd_WRITE_NT.txt")
    assert workload.perthread_line() == "0-3,8-11 W6 rand 400000 pmem /pmemfs0"


def test_bandwidth_matrix_output_files():
    workloads = bandwidth_matrix("0-3,8-11", "/pmemfs0")
    assert [w.output_name for w in workloads] == [
        "bw_seq_READ.txt",
        "bw_rnd_READ.txt",
        "bw_seq_WRITE_NT.txt",
        "bw_rnd_WRITE_NT.txt",
        "bw_seq_2READ_1WRITE_NT.txt",
        "bw_rnd_2READ_1WRITE_NT.txt",
        "bw_seq_1READ_1WRITE.txt",
        "bw_rnd_1READ_1WRITE.txt",
        "bw_seq_2READ_1WRITE.txt",
        "bw_rnd_2READ_1WRITE.txt",
    ]
    assert {w.cpus for w in workloads} == {"0-3,8-11"}
    assert [w.traffic for w in workloads[::2]] == ["R", "W6", "W7", "W5", "W2"]


def test_ramp_workloads_name_files_by_cpu_count():
    workloads = ramp_workloads([(1, "0-0"), (6, "0-3,8-9")], "/pmemfs0", buffer_kib=1000)
    assert [w.output_name for w in workloads] == [
        "bw_seq_R_1CPU.txt",
        "bw_rand_R_1CPU.txt",
        "bw_seq_W2_1CPU.txt",
        "bw_rand_W2_1CPU.txt",
        "bw_seq_R_6CPU.txt",
        "bw_rand_R_6CPU.txt",
        "bw_seq_W2_6CPU.txt",
        "bw_rand_W2_6CPU.txt",
    ]
    assert workloads[-1].perthread_line() == "0-3,8-9 W2 rand 1000 pmem /pmemfs0"
    assert workloads[-1].cpu_count == 6


def test_loaded_latency_sweeps_pin_latency_cpu():
    seq, rnd = loaded_latency_sweeps(4, "4-7,12-15", "/pmemfs1")
    assert seq.output_name == "out_llat_seq_READ.txt"
    assert rnd.output_name == "out_llat_rnd_READ.txt"
    assert rnd.perthread_lines() == [
        "4 R rand 400000 pmem /pmemfs1",
        "4-7,12-15 R rand 400000 pmem /pmemfs1",
    ]


def test_build_plan_default_matrix(topology):
    plan = build_plan(PlanOptions(pmem_path="/pmemfs0", socket=1), topology)
    assert plan.cpu_range == "4-7,12-15"
    assert plan.latency_cpu == 4
    assert [test.output_name for test in plan.idle_tests] == ["idle_seq.txt", "idle_rnd.txt"]
    assert len(list(plan)) == 10
    assert plan.ramp is False
    assert plan.loaded_latency_sweeps == []


def test_build_plan_ramp_and_loaded_latency(topology):
    options = PlanOptions(
        pmem_path="/pmemfs0",
        socket=0,
        ramp_bandwidth=True,
        loaded_latency=True,
        one_thread_per_core=True,
    )
    plan = build_plan(options, topology)
    assert plan.ramp is True
    assert [w.cpu_count for w in plan][::4] == [1, 2, 4]
    assert len(plan.loaded_latency_sweeps) == 2
