"""Holt-Winters exponential smoothing.

The state variant is selected by which components are enabled:

    no trend, no season  -> simple exponential smoothing (alpha)
    trend, no season     -> Holt's linear method (alpha, beta)
    trend + season       -> Holt-Winters (alpha, beta, gamma)

The recurrences are run by statsmodels ``ExponentialSmoothing`` with
``initialization_method="known"``, seeded with these initial states:

    SES:          l = x_1, filtering starts at t = 2
    Holt:         l = x_2, b = x_2 - x_1, filtering starts at t = 3
    Holt-Winters: classical decomposition of the first two periods; l and b
                  from a straight-line fit to its trend, s from its seasonal
                  figure; filtering starts at t = f + 1

Observations before the filtering start only seed the state, so the model
is fitted to ``x[start:]`` and their residuals stay undefined. The
smoothing parameters minimise the one-step SSE with L-BFGS-B inside the
admissible region statsmodels enforces (beta <= alpha, gamma <= 1 - alpha).

Forecast h steps ahead:
    x_hat_{n+h} = l_n + h b_n + s_{n - f + 1 + (h-1) mod f}
with variance var(e) * (1 + sum_{j=1}^{h-1} psi_j^2),
    psi_j = alpha (1 + j beta) + [j mod f == 0] gamma (1 - alpha)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import stats
from statsmodels.tsa.holtwinters import ExponentialSmoothing

from tsdiag.data.decompose import decompose
from tsdiag.data.loader import TimeSeries
from tsdiag.errors import ConfigurationError, ConvergenceError, DomainError
from tsdiag.models.base import (
    DEFAULT_LEVELS,
    FittedModel,
    Forecast,
    empty_forecast,
    sum_of_squares,
    validate_forecast_request,
)

logger = logging.getLogger(__name__)

SEASONAL_KINDS = ("additive", "multiplicative")

# statsmodels component codes
_SEASONAL_CODES = {"additive": "add", "multiplicative": "mul"}


@dataclass
class HoltWintersState:
    """Smoothing parameters and the statsmodels result needed to forecast."""

    alpha: float
    beta: float
    gamma: float
    frequency: int
    seasonal: str | None
    result: Any


def _initial_state(
    x: np.ndarray,
    frequency: int,
    trend: bool,
    seasonal: str | None,
) -> tuple[int, float, float, np.ndarray | None]:
    """Return (start index, level, trend, first-period seasonal coefficients)."""
    if seasonal is None:
        if trend:
            return 2, float(x[1]), float(x[1] - x[0]), None
        return 1, float(x[0]), 0.0, None

    f = frequency
    window = TimeSeries(values=x[: 2 * f], frequency=f)
    st = decompose(window, kind=seasonal)
    dat = st.trend[np.isfinite(st.trend)]
    slope, intercept = np.polyfit(np.arange(1, len(dat) + 1), dat, 1)
    return f, float(intercept), float(slope) if trend else 0.0, np.array(st.seasonal[:f])


class HoltWintersForecaster:
    """Exponential smoothing with optional trend and seasonal state.

    Args:
        config: Model section of the case-study config. Recognized keys:
            ``trend`` (bool), ``seasonal`` (false / "additive" /
            "multiplicative"), ``alpha``/``beta``/``gamma`` (fix a smoothing
            parameter instead of estimating it), ``maxiter``.
    """

    kind = "exponential_smoothing"

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self.trend: bool = bool(config.get("trend", True))
        seasonal = config.get("seasonal", "additive")
        if seasonal in (False, None, "none"):
            seasonal = None
        elif seasonal is True:
            seasonal = "additive"
        if seasonal is not None and seasonal not in SEASONAL_KINDS:
            raise ConfigurationError(
                f"Unknown seasonal kind '{seasonal}'. Supported: {list(SEASONAL_KINDS)} or false"
            )
        self.seasonal: str | None = seasonal
        self.fixed: dict[str, float] = {
            name: float(config[name])
            for name in ("alpha", "beta", "gamma")
            if config.get(name) is not None
        }
        for name, value in self.fixed.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
        self.maxiter: int = int(config.get("maxiter", 500))

    @property
    def label(self) -> str:
        if self.seasonal is not None:
            return f"Holt-Winters ({self.seasonal})" if self.trend else f"Seasonal ES ({self.seasonal})"
        return "Holt" if self.trend else "SES"

    def _free_parameters(self) -> list[str]:
        names = ["alpha"]
        if self.trend:
            names.append("beta")
        if self.seasonal is not None:
            names.append("gamma")
        return [name for name in names if name not in self.fixed]

    def _check_length(self, x: np.ndarray, f: int) -> None:
        if self.seasonal is not None:
            if f <= 1:
                raise ConfigurationError(
                    f"Seasonal exponential smoothing needs frequency > 1, got {f}"
                )
            if len(x) < 2 * f + 1:
                raise ConfigurationError(
                    f"Seasonal exponential smoothing needs more than two periods "
                    f"({2 * f + 1} observations), got {len(x)}"
                )
            if self.seasonal == "multiplicative" and np.any(x <= 0):
                raise DomainError("Multiplicative seasonality needs strictly positive values")
        elif len(x) < 3:
            raise ConfigurationError(f"Exponential smoothing needs >= 3 observations, got {len(x)}")

    def fit(self, series: TimeSeries) -> FittedModel:
        """Estimate smoothing parameters by minimising the one-step SSE.

        Raises:
            ConfigurationError: If the series is too short for the variant or
                a seasonal variant is requested for frequency 1.
            DomainError: If multiplicative seasonality meets values <= 0.
            ConvergenceError: If the optimizer stops without converging.
        """
        x = np.array(series.values)
        f = series.frequency
        self._check_length(x, f)

        start, level0, trend0, season0 = _initial_state(x, f, self.trend, self.seasonal)
        free = self._free_parameters()

        logger.info(
            f"Fitting {self.label} on {series.name or 'series'} "
            f"({len(x)} obs, free parameters: {free or 'none'})"
        )

        model = ExponentialSmoothing(
            x[start:],
            trend="add" if self.trend else None,
            seasonal=_SEASONAL_CODES.get(self.seasonal),
            seasonal_periods=f if self.seasonal is not None else None,
            initialization_method="known",
            initial_level=level0,
            initial_trend=trend0 if self.trend else None,
            initial_seasonal=season0,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = model.fit(
                smoothing_level=self.fixed.get("alpha"),
                smoothing_trend=self.fixed.get("beta") if self.trend else None,
                smoothing_seasonal=self.fixed.get("gamma") if self.seasonal is not None else None,
                optimized=bool(free),
                method="L-BFGS-B",
                minimize_kwargs={"options": {"maxiter": self.maxiter}},
            )

        retvals = result.mle_retvals
        if free and not retvals.success:
            raise ConvergenceError(
                f"{self.label}: L-BFGS-B did not converge in "
                f"{self.maxiter} iterations ({retvals.message})"
            )
        n_iter = int(getattr(retvals, "nit", 0)) if free else 0

        fitted = np.full(len(x), np.nan)
        fitted[start:] = np.asarray(result.fittedvalues, dtype=np.float64)
        residuals = x - fitted
        sse = sum_of_squares(residuals)

        params = result.params
        alpha = float(params["smoothing_level"])
        beta = float(params["smoothing_trend"]) if self.trend else 0.0
        gamma = float(params["smoothing_seasonal"]) if self.seasonal is not None else 0.0

        coefficients = {"alpha": alpha}
        if self.trend:
            coefficients["beta"] = beta
        if self.seasonal is not None:
            coefficients["gamma"] = gamma
        coefficients["level"] = float(np.asarray(result.level)[-1])
        if self.trend:
            coefficients["trend"] = float(np.asarray(result.trend)[-1])

        state = HoltWintersState(
            alpha=alpha,
            beta=beta,
            gamma=gamma,
            frequency=f,
            seasonal=self.seasonal,
            result=result,
        )

        logger.info(
            f"  {self.label}: "
            + ", ".join(f"{k}={v:.4f}" for k, v in coefficients.items())
            + f", SSE={sse:.4f}"
        )

        return FittedModel(
            kind=self.kind,
            name=self.label,
            coefficients=coefficients,
            fitted=fitted,
            residuals=residuals,
            sse=sse,
            n_params=len(free),
            series=series,
            extra={"start_index": start, "n_iter": n_iter, "initial_level": level0,
                   "initial_trend": trend0},
            state=state,
        )

    def forecast(
        self,
        model: FittedModel,
        horizon: int,
        levels: tuple[float, ...] = DEFAULT_LEVELS,
    ) -> Forecast:
        """Apply the recurrences forward with the smoothing parameters held fixed."""
        levels = validate_forecast_request(horizon, levels)
        if horizon == 0:
            return empty_forecast(model, levels)

        state: HoltWintersState = model.state
        f = state.frequency
        mean = np.asarray(state.result.forecast(horizon), dtype=np.float64)

        # psi_j for j = 1..h-1; the h-step variance sums psi^2 up to h-1
        j = np.arange(1, horizon)
        psi = state.alpha * (1 + j * state.beta)
        if state.seasonal is not None:
            psi = psi + (j % f == 0) * state.gamma * (1 - state.alpha)
        cum = np.concatenate([[1.0], 1.0 + np.cumsum(psi ** 2)])

        resid = model.defined_residuals()
        sigma2 = float(np.var(resid, ddof=1)) if len(resid) > 1 else 0.0
        se = np.sqrt(sigma2 * cum)

        z = stats.norm.ppf(0.5 + np.array(levels) / 200.0)
        lower = mean[:, None] - se[:, None] * z[None, :]
        upper = mean[:, None] + se[:, None] * z[None, :]

        return Forecast(
            mean=mean,
            lower=lower,
            upper=upper,
            levels=levels,
            model_name=model.name,
            time_index=model.series.time_index(horizon, offset=len(model.series)),
        )
