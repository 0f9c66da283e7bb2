from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import TRAFFIC_TYPES

LOGGER = logging.getLogger("pmembench.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

PATTERN_COLORS = {
    "seq": "#2E86AB",  # Blue
    "rand": "#F18F01",  # Orange
}

RAMP_CHART_FILENAME = "ramp_bandwidth.png"
BANDWIDTH_CHART_FILENAME = "bandwidth.png"
LOADED_LATENCY_CHART_FILENAME = "loaded_latency.png"


def render_charts(
    bandwidth: pd.DataFrame,
    loaded_latency: pd.DataFrame,
    output_dir: Path,
    ramp: bool,
) -> list[Path]:
    """Render whichever charts the collected tables support."""
    charts: list[Path] = []
    if ramp:
        path = render_ramp_chart(bandwidth, output_dir / RAMP_CHART_FILENAME)
    else:
        path = render_bandwidth_chart(bandwidth, output_dir / BANDWIDTH_CHART_FILENAME)
    if path is not None:
        charts.append(path)

    if not loaded_latency.empty:
        path = render_loaded_latency_chart(
            loaded_latency, output_dir / LOADED_LATENCY_CHART_FILENAME
        )
        if path is not None:
            charts.append(path)
    return charts


def render_ramp_chart(df: pd.DataFrame, chart_path: Path) -> Path | None:
    """Line chart of bandwidth against the number of CPUs generating traffic."""
    df = _valid_rows(df, ["cpu_count", "bandwidth_mib_s"])
    if df.empty:
        LOGGER.warning("No ramp-up bandwidth data available for chart")
        return None

    df["cpu_count"] = df["cpu_count"].astype(int)
    df["bandwidth_mib_s"] = df["bandwidth_mib_s"].astype(float)
    df["series"] = df["traffic"] + " " + df["pattern"]
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.lineplot(
        data=df.sort_values("cpu_count"),
        x="cpu_count",
        y="bandwidth_mib_s",
        hue="series",
        marker="o",
        linewidth=2.5,
        markersize=8,
        ax=ax,
    )
    ax.set_xlabel("CPUs", fontweight="semibold")
    ax.set_ylabel("Bandwidth (MiB/sec)", fontweight="semibold")
    ax.set_title("PMem Ramp-up Bandwidth", fontweight="bold", pad=15)
    ax.set_ylim(bottom=0)
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.legend(title="Traffic / Pattern", frameon=True)

    return _save(fig, chart_path)


def render_bandwidth_chart(df: pd.DataFrame, chart_path: Path) -> Path | None:
    """Grouped bars per traffic type, one bar for each access pattern."""
    df = _valid_rows(df, ["bandwidth_mib_s"])
    if df.empty:
        LOGGER.warning("No bandwidth data available for chart")
        return None

    traffic_order = list(dict.fromkeys(df["traffic"]))
    patterns = [pattern for pattern in PATTERN_COLORS if pattern in set(df["pattern"])]
    positions = np.arange(len(traffic_order))
    width = 0.8 / max(len(patterns), 1)

    fig, ax = plt.subplots(figsize=(12, 6))
    for offset, pattern in enumerate(patterns):
        subset = df[df["pattern"] == pattern].set_index("traffic")["bandwidth_mib_s"]
        values = [subset.get(traffic, 0.0) for traffic in traffic_order]
        bars = ax.bar(
            positions + offset * width - 0.4 + width / 2,
            values,
            width=width,
            label=pattern,
            color=PATTERN_COLORS[pattern],
            alpha=0.8,
            edgecolor="white",
            linewidth=2,
        )
        for bar in bars:
            height = bar.get_height()
            ax.text(
                bar.get_x() + bar.get_width() / 2.0,
                height,
                f"{height:.0f}",
                ha="center",
                va="bottom",
                fontsize=8,
            )

    ax.set_xticks(positions)
    ax.set_xticklabels(
        [f"{traffic}\n{TRAFFIC_TYPES.get(traffic, '')}" for traffic in traffic_order],
        fontsize=8,
    )
    ax.set_ylabel("Max bandwidth (MiB/sec)", fontweight="semibold")
    ax.set_title("PMem Bandwidth by Traffic Type", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")
    ax.legend(title="Pattern", frameon=True)

    return _save(fig, chart_path)


def render_loaded_latency_chart(df: pd.DataFrame, chart_path: Path) -> Path | None:
    """Latency against achieved bandwidth as injection delay shrinks."""
    df = _valid_rows(df, ["bandwidth_mb_s", "latency_ns"])
    if df.empty:
        LOGGER.warning("No loaded latency data available for chart")
        return None

    fig, ax = plt.subplots(figsize=(10, 6))
    for pattern, subset in df.groupby("pattern"):
        subset = subset.sort_values("bandwidth_mb_s")
        ax.plot(
            subset["bandwidth_mb_s"],
            subset["latency_ns"],
            marker="o",
            linewidth=2.0,
            markersize=6,
            label=pattern,
            color=PATTERN_COLORS.get(pattern, "#808080"),
        )
    ax.set_xlabel("Bandwidth (MB/sec)", fontweight="semibold")
    ax.set_ylabel("Latency (ns)", fontweight="semibold")
    ax.set_title("PMem Loaded Latency (Read)", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.legend(title="Pattern", frameon=True)

    return _save(fig, chart_path)


def _valid_rows(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    if df.empty or not set(columns).issubset(df.columns):
        return df.iloc[0:0].copy()
    mask = np.logical_and.reduce([df[column].notna() for column in columns])
    return df[mask].copy()


def _save(fig: plt.Figure, chart_path: Path) -> Path:
    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
