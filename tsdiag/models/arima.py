"""ARIMA / SARIMA with information-criterion order search.

SARIMA combines autoregressive (AR), integrated (I), and moving average (MA)
components with seasonal counterparts for periodic time series:

    SARIMA(p, d, q) x (P, D, Q, s)

    phi(B) * Phi(B^s) * (1-B)^d * (1-B^s)^D * y_t
        = theta(B) * Theta(B^s) * eps_t

    where:
        phi(B)   = 1 - phi_1*B - ... - phi_p*B^p        (AR polynomial)
        theta(B) = 1 + theta_1*B + ... + theta_q*B^q     (MA polynomial)
        Phi, Theta                                        (seasonal counterparts)
        B        = backshift operator: B*y_t = y_{t-1}
        eps_t    ~ WN(0, sigma^2)

Order selection:
    D  seasonal differencing when the STL seasonal strength
       F_s = max(0, 1 - var(R) / var(S + R)) exceeds a threshold (0.64)
    d  repeated KPSS tests on the (seasonally) differenced series; difference
       again while the level-stationarity null is rejected
    (p, q, P, Q)  exhaustive grid, lowest AIC / AICc / BIC wins. The grid is
       visited in a fixed order and ties keep the first candidate, so the
       search is deterministic for identical bounds.

With ``stationary: true`` the search is restricted to d = D = 0. A constant
series is fitted by its mean alone.
"""

from __future__ import annotations

import itertools
import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import kpss

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

INFORMATION_CRITERIA = ("aic", "aicc", "bic")


@dataclass
class MeanOnlyState:
    """Forecast state of a constant series: every future value is its mean."""

    mean: float


def _difference(x: np.ndarray, d: int, D: int, s: int) -> np.ndarray:
    for _ in range(D):
        x = x[s:] - x[:-s]
    for _ in range(d):
        x = np.diff(x)
    return x


def seasonal_strength(x: np.ndarray, period: int) -> float:
    """STL-based strength of seasonality in [0, 1]."""
    res = STL(x, period=period, robust=False).fit()
    remainder = np.asarray(res.resid)
    seasonal_plus_remainder = np.asarray(res.seasonal) + remainder
    denom = np.var(seasonal_plus_remainder)
    if denom <= 0:
        return 0.0
    return float(max(0.0, 1.0 - np.var(remainder) / denom))


def choose_seasonal_differences(
    x: np.ndarray,
    period: int,
    max_D: int = 1,
    threshold: float = 0.64,
) -> int:
    """Number of seasonal differences D needed to remove strong seasonality."""
    D = 0
    while D < max_D and len(x) >= 2 * period + 1:
        if seasonal_strength(x, period) <= threshold:
            break
        x = x[period:] - x[:-period]
        D += 1
    return D


def choose_differences(x: np.ndarray, max_d: int = 2, alpha: float = 0.05) -> int:
    """Number of first differences d suggested by repeated KPSS tests."""
    d = 0
    while d < max_d and len(x) > 3:
        if np.allclose(x, x[0]):
            break
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            _, p_value, *_ = kpss(x, regression="c", nlags="auto")
        if p_value >= alpha:
            break
        x = np.diff(x)
        d += 1
    return d


class ARIMAForecaster:
    """ARIMA/SARIMA fitter with optional full-grid order search.

    Args:
        config: Model section of the case-study config. Recognized keys:
            ``order`` / ``seasonal_order`` (fix the order and skip the
            search), ``ic`` ("aic", "aicc", "bic"), ``max_p``, ``max_q``,
            ``max_P``, ``max_Q``, ``max_order``, ``max_d``, ``max_D``,
            ``stationary``, ``seasonal``, ``kpss_alpha``,
            ``seasonal_strength_threshold``, ``maxiter``,
            ``enforce_stationarity``, ``enforce_invertibility``.
    """

    kind = "arima"

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self.order: tuple[int, int, int] | None = (
            tuple(config["order"]) if config.get("order") is not None else None
        )
        self.seasonal_order: tuple[int, int, int] | None = (
            tuple(config["seasonal_order"][:3]) if config.get("seasonal_order") is not None else None
        )
        self.ic: str = str(config.get("ic", "aicc")).lower()
        self.max_p: int = int(config.get("max_p", 5))
        self.max_q: int = int(config.get("max_q", 5))
        self.max_P: int = int(config.get("max_P", 2))
        self.max_Q: int = int(config.get("max_Q", 2))
        self.max_order: int = int(config.get("max_order", 5))
        self.max_d: int = int(config.get("max_d", 2))
        self.max_D: int = int(config.get("max_D", 1))
        self.stationary: bool = bool(config.get("stationary", False))
        self.seasonal: bool = bool(config.get("seasonal", True))
        self.kpss_alpha: float = float(config.get("kpss_alpha", 0.05))
        self.strength_threshold: float = float(config.get("seasonal_strength_threshold", 0.64))
        self.maxiter: int = int(config.get("maxiter", 200))
        self.enforce_stationarity: bool = bool(config.get("enforce_stationarity", True))
        self.enforce_invertibility: bool = bool(config.get("enforce_invertibility", True))
        self._validate()

    def _validate(self) -> None:
        if self.ic not in INFORMATION_CRITERIA:
            raise ConfigurationError(
                f"Unknown information criterion '{self.ic}'. Supported: {list(INFORMATION_CRITERIA)}"
            )
        bounds = {
            "max_p": self.max_p, "max_q": self.max_q, "max_P": self.max_P,
            "max_Q": self.max_Q, "max_order": self.max_order, "max_d": self.max_d,
            "max_D": self.max_D,
        }
        for name, value in bounds.items():
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        for name, order in (("order", self.order), ("seasonal_order", self.seasonal_order)):
            if order is not None and (len(order) != 3 or min(order) < 0):
                raise ConfigurationError(f"{name} must be three non-negative integers, got {order}")
        if self.stationary and self.order is not None and self.order[1] != 0:
            raise ConfigurationError(f"stationary=true requires d = 0, got order {self.order}")
        if self.stationary and self.seasonal_order is not None and self.seasonal_order[1] != 0:
            raise ConfigurationError(
                f"stationary=true requires D = 0, got seasonal_order {self.seasonal_order}"
            )

    def _fit_one(
        self,
        x: np.ndarray,
        order: tuple[int, int, int],
        seasonal_order: tuple[int, int, int, int],
    ) -> Any:
        d, D = order[1], seasonal_order[1]
        trend = "c" if d + D == 0 else "n"
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            model = SARIMAX(
                x,
                order=order,
                seasonal_order=seasonal_order,
                trend=trend,
                enforce_stationarity=self.enforce_stationarity,
                enforce_invertibility=self.enforce_invertibility,
            )
            return model.fit(disp=False, maxiter=self.maxiter)

    @staticmethod
    def _converged(result: Any) -> bool:
        return bool(result.mle_retvals.get("converged", True)) if result.mle_retvals else True

    def select_differencing(self, series: TimeSeries) -> tuple[int, int]:
        """Choose (d, D) for the series."""
        if self.stationary:
            return 0, 0
        x = np.array(series.values)
        s = series.frequency
        D = 0
        if self.seasonal and s > 1:
            D = choose_seasonal_differences(x, s, self.max_D, self.strength_threshold)
        d = choose_differences(_difference(x, 0, D, s), self.max_d, self.kpss_alpha)
        return d, D

    def search(self, series: TimeSeries) -> tuple[Any, tuple, tuple, list[dict]]:
        """Exhaustive order search.

        Returns:
            (best statsmodels result, order, seasonal_order, candidate table)

        Raises:
            ConvergenceError: If no candidate could be fitted.
        """
        x = np.array(series.values)
        s = series.frequency
        seasonal = self.seasonal and s > 1
        d, D = self.select_differencing(series)

        P_range = range(self.max_P + 1) if seasonal else range(1)
        Q_range = range(self.max_Q + 1) if seasonal else range(1)

        logger.info(
            f"Searching ARIMA orders for {series.name or 'series'} "
            f"(d={d}, D={D}, s={s if seasonal else 0}, ic={self.ic})"
        )

        best_result = None
        best_orders: tuple = ()
        best_ic = np.inf
        candidates: list[dict] = []

        for p, q, P, Q in itertools.product(
            range(self.max_p + 1), range(self.max_q + 1), P_range, Q_range
        ):
            if p + q + P + Q > self.max_order:
                continue
            order = (p, d, q)
            seasonal_order = (P, D, Q, s) if seasonal else (0, 0, 0, 0)
            try:
                result = self._fit_one(x, order, seasonal_order)
            except (np.linalg.LinAlgError, ValueError) as e:
                logger.debug(f"  ARIMA{order}x{seasonal_order}: skipped ({e})")
                continue
            if not self._converged(result):
                logger.debug(f"  ARIMA{order}x{seasonal_order}: skipped (not converged)")
                continue
            ic_value = float(getattr(result, self.ic))
            if not np.isfinite(ic_value):
                continue
            candidates.append({
                "order": order, "seasonal_order": seasonal_order, self.ic: ic_value,
            })
            logger.debug(f"  ARIMA{order}x{seasonal_order}: {self.ic}={ic_value:.3f}")
            if ic_value < best_ic:
                best_ic = ic_value
                best_result = result
                best_orders = (order, seasonal_order)

        if best_result is None:
            raise ConvergenceError(
                f"No ARIMA candidate could be fitted for {series.name or 'series'} "
                f"(d={d}, D={D}, {len(candidates)} usable candidates)"
            )
        return best_result, best_orders[0], best_orders[1], candidates

    def fit(self, series: TimeSeries) -> FittedModel:
        """Select an order (unless fixed) and fit it by maximum likelihood.

        A constant series has nothing to estimate beyond its mean and is
        returned as a mean-only ARIMA(0,0,0) fit with zero residuals.

        Raises:
            ConvergenceError: If the final fit does not converge or the
                search finds no usable candidate.
        """
        x = np.array(series.values)
        if np.ptp(x) == 0:
            return self._fit_constant(series)
        s = series.frequency
        candidates: list[dict] = []

        if self.order is not None:
            order = self.order
            if self.seasonal_order is not None and s > 1:
                seasonal_order = (*self.seasonal_order, s)
            else:
                seasonal_order = (0, 0, 0, 0)
            logger.info(f"Fitting ARIMA{order}x{seasonal_order} on {len(x)} samples...")
            try:
                result = self._fit_one(x, order, seasonal_order)
            except (np.linalg.LinAlgError, ValueError) as e:
                raise ConvergenceError(f"ARIMA{order}x{seasonal_order} could not be fitted: {e}") from e
            if not self._converged(result):
                raise ConvergenceError(
                    f"ARIMA{order}x{seasonal_order} did not converge within {self.maxiter} iterations"
                )
        else:
            result, order, seasonal_order, candidates = self.search(series)

        p, d, q = order
        P, D, Q, _ = seasonal_order
        n_lost = d + D * seasonal_order[3]

        residuals = np.asarray(result.resid, dtype=np.float64).copy()
        residuals[:n_lost] = np.nan
        fitted = x - residuals

        name = f"ARIMA({p},{d},{q})"
        if seasonal_order[3] > 1:
            name += f"({P},{D},{Q})[{seasonal_order[3]}]"

        coefficients = {
            str(k): float(v) for k, v in zip(result.model.param_names, np.asarray(result.params))
        }
        sse = sum_of_squares(residuals)
        logger.info(f"  {name}: aic={result.aic:.3f}, bic={result.bic:.3f}, SSE={sse:.4f}")

        return FittedModel(
            kind=self.kind,
            name=name,
            coefficients=coefficients,
            fitted=fitted,
            residuals=residuals,
            sse=sse,
            n_params=p + q + P + Q,
            series=series,
            extra={
                "order": order,
                "seasonal_order": seasonal_order,
                "aic": float(result.aic),
                "aicc": float(result.aicc),
                "bic": float(result.bic),
                "loglik": float(result.llf),
                "ic": self.ic,
                "candidates": candidates,
            },
            state=result,
        )

    def _fit_constant(self, series: TimeSeries) -> FittedModel:
        x = np.array(series.values)
        mean = float(x[0])
        logger.info(
            f"{series.name or 'series'} is constant ({mean}); "
            f"fitting the mean only, ARIMA(0,0,0)"
        )
        fitted = np.full(len(x), mean)
        residuals = x - fitted
        return FittedModel(
            kind=self.kind,
            name="ARIMA(0,0,0)",
            coefficients={"intercept": mean, "sigma2": 0.0},
            fitted=fitted,
            residuals=residuals,
            sse=sum_of_squares(residuals),
            n_params=0,
            series=series,
            extra={
                "order": (0, 0, 0),
                "seasonal_order": (0, 0, 0, 0),
                "aic": float("nan"),
                "aicc": float("nan"),
                "bic": float("nan"),
                "loglik": float("nan"),
                "ic": self.ic,
                "candidates": [],
            },
            state=MeanOnlyState(mean=mean),
        )

    def forecast(
        self,
        model: FittedModel,
        horizon: int,
        levels: tuple[float, ...] = DEFAULT_LEVELS,
    ) -> Forecast:
        """Linear ARIMA recursion h steps ahead with state-space intervals."""
        levels = validate_forecast_request(horizon, levels)
        if horizon == 0:
            return empty_forecast(model, levels)

        if isinstance(model.state, MeanOnlyState):
            mean = np.full(horizon, model.state.mean)
            bound = np.repeat(mean[:, None], len(levels), axis=1)
            return Forecast(
                mean=mean,
                lower=bound,
                upper=bound.copy(),
                levels=levels,
                model_name=model.name,
                time_index=model.series.time_index(horizon, offset=len(model.series)),
            )

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            prediction = model.state.get_forecast(steps=horizon)
            mean = np.asarray(prediction.predicted_mean, dtype=np.float64)
            bounds = [np.asarray(prediction.conf_int(alpha=1 - level / 100.0)) for level in levels]

        return Forecast(
            mean=mean,
            lower=np.column_stack([b[:, 0] for b in bounds]),
            upper=np.column_stack([b[:, 1] for b in bounds]),
            levels=levels,
            model_name=model.name,
            time_index=model.series.time_index(horizon, offset=len(model.series)),
        )
