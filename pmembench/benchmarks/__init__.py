"""
MLC benchmark plans, execution and result handling.

This package turns the discovered topology into the list of MLC invocations,
runs them one at a time, scrapes the textual output, and renders
presentation-ready charts of bandwidth and latency.
"""

from .config import BenchmarkPlan, build_plan
from .suite import execute_plan

__all__ = ["BenchmarkPlan", "build_plan", "execute_plan"]
