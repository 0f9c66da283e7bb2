from __future__ import annotations

import os
import subprocess

os.environ.setdefault("MPLBACKEND", "Agg")

import pytest

from pmembench.topology import CpuTopology

LSCPU_OUTPUT = """\
Architecture:        x86_64
CPU op-mode(s):      32-bit, 64-bit
Byte Order:          Little Endian
CPU(s):              16
On-line CPU(s) list: 0-15
Thread(s) per core:  2
Core(s) per socket:  4
Socket(s):           2
NUMA node(s):        2
Model name:          Intel(R) Xeon(R) Platinum 8260L CPU @ 2.40GHz
NUMA node0 CPU(s):   0-3,8-11
NUMA node1 CPU(s):   4-7,12-15
"""

NUMACTL_OUTPUT = """\
available: 2 nodes (0-1)
node 0 cpus: 0 1 2 3 8 9 10 11
node 0 size: 95287 MB
node 0 free: 91022 MB
node 1 cpus: 4 5 6 7 12 13 14 15
node 1 size: 96760 MB
node 1 free: 93500 MB
node distances:
node   0   1
  0:  10  21
  1:  21  10
"""

IPMCTL_DIMM_OUTPUT = """\
---DimmID=0x0001---
   Capacity=252.4 GiB
   LockState=Disabled
   HealthState=Healthy
   FWVersion=01.02.00.5435
   DeviceLocator=CPU1_DIMM_A2
   ARSStatus=Completed
   AvgPowerBudget=15000 mW
---DimmID=0x0101---
   Capacity=252.4 GiB
   LockState=Disabled
   HealthState=Healthy
   FWVersion=01.02.00.5435
   DeviceLocator=CPU1_DIMM_B2
   ARSStatus=Completed
   AvgPowerBudget=15000 mW
"""

MLC_IDLE_OUTPUT = """\
Intel(R) Memory Latency Checker - v3.9a
Command line parameters: --idle_latency -c0 -J/pmemfs0

Using buffer size of 200.000MiB
*** Unable to modify prefetchers (try executing 'modprobe msr')
*** So, enabling random access for latency measurements
Each iteration took 402.5 base frequency clocks (	167.7	ns)
"""

MLC_BANDWIDTH_OUTPUT = """\
Intel(R) Memory Latency Checker - v3.9a
Command line parameters: --loaded_latency -d0 -o./PMem_perthread.txt -t15 -T

Using buffer size of 390.625MiB/thread for reads and an additional 390.625MiB/thread for writes

Measuring Loaded Latencies for the system
Using Read-only traffic type
Inject	Latency	Bandwidth
Delay	(ns)	MB/sec
==========================
 00000	0.00	  12345.6
"""

MLC_LOADED_LATENCY_OUTPUT = """\
Intel(R) Memory Latency Checker - v3.9a
Command line parameters: --loaded_latency -g./delays.txt -o./PMem_perthread.txt -t15

Measuring Loaded Latencies for the system
Inject	Latency	Bandwidth
Delay	(ns)	MB/sec
==========================
 00000	812.40	  38120.3
 00050	790.11	  37982.0
 00100	611.52	  35011.7
 80000	170.03	    412.9
"""


@pytest.fixture
def topology() -> CpuTopology:
    return CpuTopology.from_outputs(LSCPU_OUTPUT, NUMACTL_OUTPUT)


@pytest.fixture
def fake_subprocess(monkeypatch):
    """Replace subprocess.run; returns the list of recorded command lines."""
    calls: list[list[str]] = []
    responses: dict[str, tuple[int, str]] = {}

    def fake_run(args, **kwargs):
        calls.append(list(args))
        key = " ".join(args[1:2])
        returncode, stdout = responses.get(key, (0, ""))
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr="boom" if returncode else "")

    monkeypatch.setattr(subprocess, "run", fake_run)
    fake_run.calls = calls
    fake_run.responses = responses
    return fake_run
