"""Trend / seasonal / remainder decomposition.

Two modes:

Non-seasonal smoothing:
    trend_t     = centered moving average of width ``window``
    remainder_t = y_t - trend_t

Classical seasonal decomposition (period f = series frequency):
    trend_t     = centered moving average of width f (2 x f filter when f is even)
    detrended_t = y_t - trend_t
    figure_k    = mean of detrended_t over all t with phase k, then centered
                  so that sum_k figure_k = 0
    seasonal_t  = figure_{phase(t)}
    remainder_t = y_t - trend_t - seasonal_t

The first and last ``window // 2`` trend and remainder values cannot be
centered and are left as NaN.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from statsmodels.tsa.filters.filtertools import convolution_filter
from statsmodels.tsa.seasonal import seasonal_decompose

from tsdiag.data.loader import TimeSeries
from tsdiag.errors import ConfigurationError, DomainError

logger = logging.getLogger(__name__)

DECOMPOSITION_KINDS = ("additive", "multiplicative")


@dataclass(frozen=True, eq=False)
class Decomposition:
    """Components of one series, aligned index-for-index with it.

    Attributes:
        observed: The decomposed values.
        trend: Centered moving average, NaN at the edges.
        seasonal: Repeated seasonal figure, or None in smoothing mode.
        remainder: What trend (and seasonal) leave unexplained, NaN at the edges.
        figure: One period of seasonal effects indexed by phase 1..f
            (position 0 holds phase 1), or None in smoothing mode.
        kind: "additive" or "multiplicative".
        window: Moving-average width used for the trend.
        frequency: Series frequency the decomposition was computed for.
    """

    observed: np.ndarray
    trend: np.ndarray
    seasonal: np.ndarray | None
    remainder: np.ndarray
    figure: np.ndarray | None
    kind: str
    window: int
    frequency: int

    @property
    def is_seasonal(self) -> bool:
        return self.seasonal is not None

    @property
    def edge(self) -> int:
        """Number of undefined points at each end."""
        return self.window // 2


def _ma_filter(window: int) -> np.ndarray:
    if window % 2 == 0:
        filt = np.array([0.5] + [1.0] * (window - 1) + [0.5]) / window
    else:
        filt = np.repeat(1.0 / window, window)
    return filt


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average with NaN edges.

    Even windows use the 2 x m filter (half weight on both end points) so
    that the average stays centered on an observation.

    Args:
        values: 1-D array.
        window: Number of observations averaged, >= 1.

    Raises:
        ConfigurationError: If the window is < 1 or leaves no defined point.
    """
    values = np.asarray(values, dtype=np.float64)
    if window < 1:
        raise ConfigurationError(f"Moving-average window must be >= 1, got {window}")
    if len(values) <= 2 * (window // 2):
        raise ConfigurationError(
            f"Moving-average window {window} too wide for {len(values)} observations"
        )
    return np.asarray(convolution_filter(values, _ma_filter(window), nsides=2), dtype=np.float64)


def smooth(series: TimeSeries, window: int) -> Decomposition:
    """Non-seasonal decomposition: moving-average trend plus remainder."""
    trend = moving_average(series.values, window)
    remainder = series.values - trend
    logger.info(f"Smoothed {series.name or 'series'} with centered MA({window})")
    return Decomposition(
        observed=np.array(series.values),
        trend=trend,
        seasonal=None,
        remainder=remainder,
        figure=None,
        kind="additive",
        window=window,
        frequency=series.frequency,
    )


def decompose(series: TimeSeries, kind: str = "additive") -> Decomposition:
    """Classical seasonal decomposition with period = series frequency.

    Args:
        series: Series with frequency > 1 and at least two full periods.
        kind: "additive" (y = T + S + R) or "multiplicative" (y = T * S * R).

    Raises:
        ConfigurationError: If the frequency is <= 1, fewer than two full
            periods are available, or ``kind`` is unknown.
        DomainError: If a multiplicative decomposition is requested for a
            series with values <= 0.
    """
    f = series.frequency
    if kind not in DECOMPOSITION_KINDS:
        raise ConfigurationError(
            f"Unknown decomposition kind '{kind}'. Supported: {list(DECOMPOSITION_KINDS)}"
        )
    if f <= 1:
        raise ConfigurationError(
            f"Seasonal decomposition needs frequency > 1, got {f}; use smooth() instead"
        )
    if len(series) < 2 * f:
        raise ConfigurationError(
            f"Seasonal decomposition needs at least two full periods "
            f"({2 * f} observations), got {len(series)}"
        )
    if kind == "multiplicative" and (series.values <= 0).any():
        raise DomainError("Multiplicative decomposition requires positive values")

    result = seasonal_decompose(np.array(series.values), model=kind, period=f, two_sided=True)
    seasonal = np.asarray(result.seasonal, dtype=np.float64)

    figure = np.empty(f)
    figure[series.cycle(f) - 1] = seasonal[:f]

    logger.info(f"Decomposed {series.name or 'series'} ({kind}, period={f})")
    return Decomposition(
        observed=np.array(series.values),
        trend=np.asarray(result.trend, dtype=np.float64),
        seasonal=seasonal,
        remainder=np.asarray(result.resid, dtype=np.float64),
        figure=figure,
        kind=kind,
        window=f,
        frequency=f,
    )


def seasonally_adjust(series: TimeSeries, decomposition: Decomposition) -> TimeSeries:
    """Remove the seasonal component from a series."""
    if decomposition.seasonal is None:
        raise ConfigurationError("Decomposition has no seasonal component")
    if decomposition.kind == "multiplicative":
        adjusted = series.values / decomposition.seasonal
    else:
        adjusted = series.values - decomposition.seasonal
    return series.with_values(adjusted, name=f"{series.name} (seasonally adjusted)".strip())
