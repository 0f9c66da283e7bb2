"""
Orchestration of Intel Memory Latency Checker runs against persistent memory.

The package validates the PMem platform (tool availability, DIMM health,
capacity, address range scrub), discovers the CPU topology of the target
socket, drives MLC through idle latency, bandwidth and loaded latency tests,
and summarises the scraped results as CSV tables and charts.
"""

__version__ = "1.1.0"

__all__ = ["__version__"]
