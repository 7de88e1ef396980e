"""Regression on time (and season) with ARMA-correlated errors, fitted by GLS.

Model:
    y_t = X_t beta + u_t,     u_t ~ ARMA(p, q)

    X_t = [1, time_t, 1{phase_t = 2}, ..., 1{phase_t = f}]   (seasonal)
    X_t = [1, time_t]                                          (non-seasonal)

Estimation (feasible GLS, iterated):
    1. beta_0 from ordinary least squares
    2. fit ARMA(p, q) to u = y - X beta_k
    3. R = correlation matrix implied by the ARMA autocovariances
    4. beta_{k+1} = (X' R^-1 X)^-1 X' R^-1 y
    5. repeat 2-4 until the largest relative coefficient change < tol

The ARMA order is supplied by the caller, not searched.

The regression residuals u keep the ARMA correlation, so residual
diagnostics run on the one-step innovations of the fitted ARMA filter
instead, with the ARMA parameter count as the Ljung-Box adjustment. SSE is
computed from u.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from scipy.linalg import toeplitz
from statsmodels.tsa.arima_process import arma_acovf
from statsmodels.tsa.statespace.sarimax import SARIMAX

from tsdiag.data.loader import TimeSeries
from tsdiag.errors import ConfigurationError, ConvergenceError
from tsdiag.models.base import (
    DEFAULT_LEVELS,
    FittedModel,
    Forecast,
    empty_forecast,
    sum_of_squares,
    validate_forecast_request,
)

logger = logging.getLogger(__name__)


def build_design_matrix(
    series: TimeSeries,
    seasonal: bool | None = None,
    n: int | None = None,
    offset: int = 0,
) -> pd.DataFrame:
    """Regression design matrix for a series' time grid.

    Args:
        series: Series whose frequency and start define the time grid.
        seasonal: Add treatment-coded phase dummies (phase 1 is the
            baseline). Defaults to ``frequency > 1``.
        n: Number of rows (default: series length).
        offset: Index of the first row relative to the series start, so
            ``offset = len(series)`` gives the rows for forecasting.

    Returns:
        DataFrame with columns ``const``, ``time`` and ``phase_2..phase_f``.
    """
    n = len(series) if n is None else n
    f = series.frequency
    seasonal = f > 1 if seasonal is None else seasonal

    design = pd.DataFrame({
        "const": np.ones(n),
        "time": series.time_index(n, offset=offset),
    })
    if seasonal and f > 1:
        phase = pd.Categorical(series.cycle(n, offset=offset), categories=range(1, f + 1))
        dummies = pd.get_dummies(phase, prefix="phase", drop_first=True, dtype=float)
        design = pd.concat([design, dummies], axis=1)
    return design


def arma_correlation(ar: np.ndarray, ma: np.ndarray, n: int) -> np.ndarray:
    """n x n correlation matrix of a stationary ARMA process."""
    acov = arma_acovf(np.r_[1.0, -np.asarray(ar)], np.r_[1.0, np.asarray(ma)], nobs=n, sigma2=1.0)
    return toeplitz(acov / acov[0])


@dataclass
class GLSState:
    """Regression coefficients and error model needed to forecast."""

    params: np.ndarray
    columns: list[str]
    seasonal: bool
    error_model: Any  # SARIMAXResults on the final residuals, None for white noise
    sigma2: float


class GLSForecaster:
    """Linear trend (+ season) regression with ARMA errors.

    Args:
        config: Model section of the case-study config. Recognized keys:
            ``error_order`` ([p, q] of the error ARMA, [0, 0] for
            uncorrelated errors), ``seasonal`` (add phase dummies, default
            when frequency > 1), ``max_iter``, ``tol``.
    """

    kind = "gls"

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        error_order = config.get("error_order", [1, 0])
        if len(error_order) != 2 or min(error_order) < 0:
            raise ConfigurationError(f"error_order must be [p, q] with p, q >= 0, got {error_order}")
        self.p, self.q = int(error_order[0]), int(error_order[1])
        self.seasonal: bool | None = config.get("seasonal")
        self.max_iter: int = int(config.get("max_iter", 50))
        self.tol: float = float(config.get("tol", 1e-6))
        if self.max_iter < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {self.max_iter}")

    @property
    def white_noise(self) -> bool:
        return self.p == 0 and self.q == 0

    def _fit_errors(self, u: np.ndarray) -> Any:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = SARIMAX(u, order=(self.p, 0, self.q), trend="n").fit(disp=False)
        if result.mle_retvals and not result.mle_retvals.get("converged", True):
            raise ConvergenceError(
                f"ARMA({self.p},{self.q}) error model did not converge"
            )
        return result

    def fit(self, series: TimeSeries) -> FittedModel:
        """Iterate between ARMA error estimation and GLS until convergence.

        Raises:
            ConfigurationError: If the series is shorter than the number of
                regression coefficients plus error parameters.
            ConvergenceError: If coefficients have not settled after
                ``max_iter`` iterations.
        """
        design = build_design_matrix(series, self.seasonal)
        seasonal = design.shape[1] > 2
        X = design.to_numpy()
        y = np.array(series.values)
        n, k = X.shape
        if n <= k + self.p + self.q:
            raise ConfigurationError(
                f"GLS needs more than {k + self.p + self.q} observations, got {n}"
            )

        name = f"GLS(time{' + season' if seasonal else ''}, ARMA({self.p},{self.q}) errors)"
        logger.info(f"Fitting {name} on {series.name or 'series'} ({n} obs, {k} coefficients)")

        beta = sm.OLS(y, X).fit().params
        converged = False
        error_result = None
        gls_result = None
        for iteration in range(1, self.max_iter + 1):
            sigma = None
            if not self.white_noise:
                error_result = self._fit_errors(y - X @ beta)
                params = np.asarray(error_result.params)
                sigma = arma_correlation(params[: self.p], params[self.p: self.p + self.q], n)
            gls_result = sm.GLS(y, X, sigma=sigma).fit()
            new_beta = np.asarray(gls_result.params)
            change = float(np.max(np.abs(new_beta - beta) / (np.abs(beta) + self.tol)))
            beta = new_beta
            logger.debug(f"  GLS iteration {iteration}: max relative change {change:.2e}")
            if change < self.tol:
                converged = True
                break

        if not converged:
            raise ConvergenceError(
                f"{name}: coefficients did not converge within {self.max_iter} iterations"
            )

        fitted = X @ beta
        residuals = y - fitted
        sse = sum_of_squares(residuals)
        innovations = None

        coefficients = {col: float(b) for col, b in zip(design.columns, beta)}
        if error_result is not None:
            # Same ARMA parameters, filtered over the final residuals
            error_result = error_result.apply(residuals)
            innovations = np.asarray(error_result.resid, dtype=np.float64)
            coefficients.update({
                str(k_): float(v)
                for k_, v in zip(error_result.model.param_names, np.asarray(error_result.params))
            })
            sigma2 = float(coefficients.get("sigma2", sse / (n - k)))
        else:
            sigma2 = sse / (n - k)
            coefficients["sigma2"] = sigma2
        logger.info(f"  {name}: converged in {iteration} iterations, SSE={sse:.4f}")

        return FittedModel(
            kind=self.kind,
            name=name,
            coefficients=coefficients,
            fitted=fitted,
            residuals=residuals,
            sse=sse,
            n_params=self.p + self.q,
            series=series,
            extra={
                "n_iter": iteration,
                "bse": {col: float(s) for col, s in zip(design.columns, gls_result.bse)},
                "error_order": (self.p, self.q),
            },
            state=GLSState(
                params=np.asarray(beta),
                columns=list(design.columns),
                seasonal=seasonal,
                error_model=error_result,
                sigma2=sigma2,
            ),
            innovations=innovations,
        )

    def forecast(
        self,
        model: FittedModel,
        horizon: int,
        levels: tuple[float, ...] = DEFAULT_LEVELS,
    ) -> Forecast:
        """Regression mean on future design rows plus the ARMA error forecast.

        Intervals come from the error forecast variance only; uncertainty
        in the regression coefficients is not propagated.
        """
        levels = validate_forecast_request(horizon, levels)
        if horizon == 0:
            return empty_forecast(model, levels)

        state: GLSState = model.state
        series = model.series
        future = build_design_matrix(series, state.seasonal, n=horizon, offset=len(series))
        regression_mean = future[state.columns].to_numpy() @ state.params

        if state.error_model is None:
            error_mean = np.zeros(horizon)
            z = stats.norm.ppf(0.5 + np.array(levels) / 200.0)
            half_width = np.sqrt(state.sigma2) * z
            bounds = [np.column_stack([-np.repeat(w, horizon), np.repeat(w, horizon)])
                      for w in half_width]
        else:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                prediction = state.error_model.get_forecast(steps=horizon)
                error_mean = np.asarray(prediction.predicted_mean, dtype=np.float64)
                bounds = [np.asarray(prediction.conf_int(alpha=1 - level / 100.0))
                          for level in levels]

        return Forecast(
            mean=regression_mean + error_mean,
            lower=np.column_stack([regression_mean + b[:, 0] for b in bounds]),
            upper=np.column_stack([regression_mean + b[:, 1] for b in bounds]),
            levels=levels,
            model_name=model.name,
            time_index=series.time_index(horizon, offset=len(series)),
        )
