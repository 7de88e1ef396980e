"""Shared model capability: fit a series, forecast from the fit.

Every model variant exposes the same two operations,

    fit(series) -> FittedModel
    forecast(model, horizon, levels) -> Forecast

so that diagnostics and comparison never need to know which variant
produced a residual sequence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import numpy as np

from tsdiag.data.loader import TimeSeries
from tsdiag.errors import ConfigurationError

DEFAULT_LEVELS: tuple[float, ...] = (80.0, 95.0)


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Result of fitting one model variant to one series.

    Attributes:
        kind: Variant key ("exponential_smoothing", "arima", "gls").
        name: Display name including the selected configuration.
        coefficients: Estimated parameters by name.
        fitted: In-sample one-step predictions aligned with the series,
            NaN where the model produces none.
        residuals: ``series - fitted`` aligned with the series, NaN where
            undefined.
        sse: Sum of squared defined residuals.
        n_params: Effective number of estimated parameters (used as the
            Ljung-Box degrees-of-freedom adjustment).
        series: The series the model was fitted to.
        extra: Variant-specific details (selected order, IC values, ...).
        state: Variant-specific object needed to forecast.
        innovations: Whitened one-step errors for variants whose residuals
            are not white by construction (regression with ARMA errors).
            Residual diagnostics use these when set.
    """

    kind: str
    name: str
    coefficients: dict[str, float]
    fitted: np.ndarray
    residuals: np.ndarray
    sse: float
    n_params: int
    series: TimeSeries
    extra: dict[str, Any] = field(default_factory=dict)
    state: Any = None
    innovations: np.ndarray | None = None

    @property
    def n_residuals(self) -> int:
        """Number of defined (non-NaN) residuals."""
        return int(np.isfinite(self.residuals).sum())

    def defined_residuals(self) -> np.ndarray:
        """Residuals with undefined leading/trailing positions dropped."""
        return self.residuals[np.isfinite(self.residuals)]

    def diagnostic_residuals(self) -> np.ndarray:
        """Sequence the residual diagnostics run on."""
        if self.innovations is not None:
            return self.innovations[np.isfinite(self.innovations)]
        return self.defined_residuals()


@dataclass(frozen=True, eq=False)
class Forecast:
    """Point forecasts with prediction intervals from one fitted model.

    Attributes:
        mean: Point forecasts, shape (horizon,).
        lower: Lower bounds, shape (horizon, n_levels).
        upper: Upper bounds, shape (horizon, n_levels).
        levels: Interval coverage levels in percent.
        model_name: Name of the model that produced the forecast.
        time_index: Fractional times of the forecast points.
    """

    mean: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    levels: tuple[float, ...]
    model_name: str
    time_index: np.ndarray

    @property
    def horizon(self) -> int:
        return len(self.mean)

    def width(self, level: float) -> np.ndarray:
        """Interval width per step for one coverage level."""
        if level not in self.levels:
            raise KeyError(f"Level {level} not in forecast levels {self.levels}")
        j = self.levels.index(level)
        return self.upper[:, j] - self.lower[:, j]


class Forecaster(Protocol):
    """Capability shared by every model variant."""

    kind: str

    def fit(self, series: TimeSeries) -> FittedModel: ...

    def forecast(
        self,
        model: FittedModel,
        horizon: int,
        levels: tuple[float, ...] = DEFAULT_LEVELS,
    ) -> Forecast: ...


def validate_forecast_request(horizon: int, levels: tuple[float, ...]) -> tuple[float, ...]:
    """Check a forecast horizon and coverage levels.

    Raises:
        ConfigurationError: If the horizon is negative or a level is
            outside (0, 100).
    """
    if horizon < 0:
        raise ConfigurationError(f"Forecast horizon must be >= 0, got {horizon}")
    levels = tuple(float(level) for level in levels)
    for level in levels:
        if not 0.0 < level < 100.0:
            raise ConfigurationError(f"Interval level must be in (0, 100), got {level}")
    return levels


def empty_forecast(model: FittedModel, levels: tuple[float, ...]) -> Forecast:
    """Zero-step forecast."""
    return Forecast(
        mean=np.empty(0),
        lower=np.empty((0, len(levels))),
        upper=np.empty((0, len(levels))),
        levels=levels,
        model_name=model.name,
        time_index=np.empty(0),
    )


def sum_of_squares(residuals: np.ndarray) -> float:
    """SSE over the defined residuals."""
    resid = residuals[np.isfinite(residuals)]
    return float(np.sum(resid ** 2))
