"""Figures for case-study reports."""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from statsmodels.graphics.tsaplots import plot_acf, plot_pacf

from tsdiag.data.decompose import Decomposition
from tsdiag.data.loader import TimeSeries
from tsdiag.evaluation.diagnostics import DiagnosticReport
from tsdiag.models.base import Forecast

# Use a clean style
plt.style.use("seaborn-v0_8-whitegrid")

C_PRIMARY = "#2196F3"
C_SECONDARY = "#FF5722"
C_ACCENT = "#4CAF50"
C_BAND = "#FF9800"


def _save(fig: plt.Figure, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_series(series: TimeSeries, output_path: Path, title: str | None = None) -> None:
    """Line plot of a series against its time index."""
    fig, ax = plt.subplots(figsize=(14, 5))
    ax.plot(series.time_index(), series.values, color=C_PRIMARY, linewidth=1.2)
    ax.set_xlabel("Time")
    ax.set_ylabel(series.name or "Value")
    ax.set_title(title or series.name or "Time series")
    _save(fig, output_path)


def plot_decomposition(
    series: TimeSeries,
    decomposition: Decomposition,
    output_path: Path,
) -> None:
    """Observed / trend / seasonal / remainder panels."""
    panels = [("Observed", decomposition.observed), ("Trend", decomposition.trend)]
    if decomposition.seasonal is not None:
        panels.append(("Seasonal", decomposition.seasonal))
    panels.append(("Remainder", decomposition.remainder))

    t = series.time_index()
    fig, axes = plt.subplots(len(panels), 1, figsize=(12, 2.5 * len(panels)), sharex=True)
    for ax, (label, values) in zip(axes, panels):
        if label == "Remainder":
            ax.scatter(t, values, s=6, color=C_SECONDARY)
            ax.axhline(1.0 if decomposition.kind == "multiplicative" else 0.0,
                       color="black", linewidth=0.8)
        else:
            ax.plot(t, values, color=C_PRIMARY, linewidth=1.0)
        ax.set_ylabel(label)
    axes[0].set_title(
        f"{series.name or 'Series'} - "
        + (f"{decomposition.kind} decomposition" if decomposition.is_seasonal
           else f"moving average (window={decomposition.window})")
    )
    axes[-1].set_xlabel("Time")
    _save(fig, output_path)


def plot_acf_pacf(
    values: np.ndarray,
    title: str,
    output_path: Path,
    max_lag: int = 20,
) -> None:
    """ACF and PACF panels with 95% bands."""
    values = np.asarray(values)
    values = values[np.isfinite(values)]
    acf_lags = max(1, min(max_lag, len(values) - 1))
    pacf_lags = max(1, min(max_lag, len(values) // 2 - 1))

    fig, axes = plt.subplots(2, 1, figsize=(12, 8))
    plot_acf(values, ax=axes[0], lags=acf_lags, alpha=0.05, title=f"ACF - {title}")
    plot_pacf(values, ax=axes[1], lags=pacf_lags, alpha=0.05, method="ywm",
              title=f"PACF - {title}")
    _save(fig, output_path)


def plot_forecast(
    series: TimeSeries,
    forecast: Forecast,
    output_path: Path,
    fitted: np.ndarray | None = None,
) -> None:
    """Observed series, optional in-sample fit, and forecast fan."""
    fig, ax = plt.subplots(figsize=(14, 5))
    ax.plot(series.time_index(), series.values, label="Observed", color=C_PRIMARY, linewidth=1.0)
    if fitted is not None:
        ax.plot(series.time_index(), fitted, label="Fitted", color=C_SECONDARY,
                linewidth=1.0, alpha=0.8)

    # Widest interval first so narrower bands draw on top
    order = np.argsort(forecast.levels)[::-1]
    for rank, j in enumerate(order):
        ax.fill_between(
            forecast.time_index, forecast.lower[:, j], forecast.upper[:, j],
            alpha=0.2 + 0.15 * rank, color=C_BAND,
            label=f"{forecast.levels[j]:.0f}% prediction interval",
        )
    ax.plot(forecast.time_index, forecast.mean, label="Forecast", color=C_ACCENT, linewidth=1.5)
    ax.set_xlabel("Time")
    ax.set_ylabel(series.name or "Value")
    ax.set_title(f"{forecast.model_name} - {forecast.horizon}-step forecast")
    ax.legend()
    _save(fig, output_path)


def plot_residual_distribution(report: DiagnosticReport, output_path: Path) -> None:
    """Residual histogram (density scale) with KDE and normal curves."""
    dist = report.distribution
    fig, ax = plt.subplots(figsize=(8, 5))
    sns.histplot(report.residuals, bins=dist.edges, stat="density", color=C_PRIMARY,
                 alpha=0.6, edgecolor="white", ax=ax)
    if dist.kde is not None:
        ax.plot(dist.grid, dist.kde, color=C_SECONDARY, linewidth=2, label="KDE")
    if dist.normal_pdf is not None:
        ax.plot(dist.grid, dist.normal_pdf, color=C_ACCENT, linewidth=2, linestyle="--",
                label=f"Normal fit (mean={dist.mean:.3g}, sd={dist.std:.3g})")
    ax.axvline(0, color="red", linestyle="--", linewidth=1.0)
    ax.set_xlabel("Residual")
    ax.set_ylabel("Density")
    ax.set_title(f"{report.model_name} - Residual Distribution")
    if dist.kde is not None:
        ax.legend(fontsize=8)
    _save(fig, output_path)


def plot_qq(report: DiagnosticReport, output_path: Path) -> None:
    """Normal QQ plot with the quartile reference line."""
    qq = report.qq
    fig, ax = plt.subplots(figsize=(7, 7))
    ax.scatter(qq.theoretical, qq.sample, s=10, color=C_PRIMARY)
    ax.plot(qq.theoretical, qq.line(qq.theoretical), color=C_SECONDARY, linewidth=1.5)
    lb = report.ljung_box
    ax.text(
        0.05, 0.95,
        f"Ljung-Box: Q={lb.statistic:.3f}, df={lb.df}, p={lb.p_value:.4f}",
        transform=ax.transAxes, fontsize=8, verticalalignment="top",
        bbox=dict(boxstyle="round", facecolor="wheat", alpha=0.5),
    )
    ax.set_xlabel("Theoretical quantiles")
    ax.set_ylabel("Sample quantiles")
    ax.set_title(f"{report.model_name} - Normal Q-Q")
    _save(fig, output_path)


def plot_sse_comparison(table: pd.DataFrame, title: str, output_path: Path) -> None:
    """Bar chart of raw SSE per model, annotated with residual counts."""
    fig, ax = plt.subplots(figsize=(10, 5))
    colors = [C_PRIMARY, C_SECONDARY, C_ACCENT, "#FFC107", "#9C27B0"]
    bars = ax.bar(table.index.astype(str), table["sse"].values,
                  color=colors[: len(table)], alpha=0.8)
    for bar, sse, n in zip(bars, table["sse"].values, table["n_residuals"].values):
        ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height(),
                f"{sse:.3g}\n(n={n})", ha="center", va="bottom", fontsize=9)
    ax.set_ylabel("SSE")
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.tick_params(axis="x", rotation=15)
    _save(fig, output_path)
