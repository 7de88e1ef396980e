"""Residual diagnostics for fitted models.

Every function here is a pure function of a residual sequence; undefined
(NaN) positions, e.g. the observations consumed by differencing or by the
smoothing start-up, are dropped first.

- ACF / PACF up to a maximum lag
- Ljung-Box portmanteau test:
      Q = n (n + 2) * sum_{k=1..h} rho_k^2 / (n - k)  ~  chi2(h - fitdf)
  H0: residuals are uncorrelated up to lag h
- Histogram with a Gaussian KDE and a fitted normal curve
- Normal QQ comparison with the reference line through the quartiles
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
from scipy import stats
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tsa.stattools import acf, pacf

from tsdiag.errors import ConfigurationError
from tsdiag.models.base import FittedModel

logger = logging.getLogger(__name__)

DEFAULT_MAX_LAG = 20

# Residual variance below this fraction of the mean square of the series
# counts as zero
DEGENERACY_TOL = 1e-10


def clean_residuals(residuals: np.ndarray) -> np.ndarray:
    """Drop NaN / infinite positions."""
    residuals = np.asarray(residuals, dtype=np.float64).ravel()
    return residuals[np.isfinite(residuals)]


def is_degenerate(residuals: np.ndarray, scale: float | None = None) -> bool:
    """True when the residuals have (numerically) zero variance.

    Args:
        residuals: Defined residuals.
        scale: Mean square of the fitted series. Optimizer noise left in the
            residuals of an exact fit is measured against it. Defaults to
            the mean square of the residuals themselves.
    """
    if len(residuals) < 2:
        return True
    if scale is None:
        scale = float(np.mean(residuals ** 2))
    return float(np.var(residuals)) <= DEGENERACY_TOL * scale


@dataclass(frozen=True)
class LjungBoxResult:
    """Ljung-Box test outcome.

    ``degenerate`` is set for zero-variance residuals, where the
    autocorrelations are undefined; statistic and p-value are then NaN.
    """

    statistic: float
    p_value: float
    lag: int
    df: int
    n: int
    degenerate: bool = False

    def rejects(self, alpha: float = 0.05) -> bool:
        """Whether H0 (no autocorrelation up to ``lag``) is rejected."""
        return not self.degenerate and self.p_value < alpha


@dataclass(frozen=True, eq=False)
class DistributionSummary:
    """Histogram of residuals plus overlaid density curves."""

    counts: np.ndarray
    density: np.ndarray
    edges: np.ndarray
    mean: float
    std: float
    skewness: float
    kurtosis: float
    grid: np.ndarray
    kde: np.ndarray | None
    normal_pdf: np.ndarray | None
    shapiro_pvalue: float | None = None


@dataclass(frozen=True, eq=False)
class QQComparison:
    """Sample quantiles against theoretical normal quantiles."""

    theoretical: np.ndarray
    sample: np.ndarray
    slope: float
    intercept: float

    def line(self, x: np.ndarray) -> np.ndarray:
        return self.intercept + self.slope * np.asarray(x)


@dataclass(frozen=True, eq=False)
class DiagnosticReport:
    """Everything the diagnostic stage derives from one residual sequence."""

    model_name: str
    n: int
    acf: np.ndarray
    pacf: np.ndarray
    ljung_box: LjungBoxResult
    distribution: DistributionSummary
    qq: QQComparison
    residuals: np.ndarray = field(repr=False)

    def summary(self) -> dict[str, float | int | str | bool]:
        """Flat dict for tables and logs."""
        return {
            "model": self.model_name,
            "n_residuals": self.n,
            "resid_mean": self.distribution.mean,
            "resid_std": self.distribution.std,
            "lb_lag": self.ljung_box.lag,
            "lb_df": self.ljung_box.df,
            "lb_stat": self.ljung_box.statistic,
            "lb_pvalue": self.ljung_box.p_value,
            "degenerate": self.ljung_box.degenerate,
        }


def autocorrelations(
    residuals: np.ndarray,
    max_lag: int = DEFAULT_MAX_LAG,
    scale: float | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Sample ACF and PACF at lags 0..max_lag.

    The ACF lag is capped at n - 1 and the PACF lag at n // 2 - 1. For
    zero-variance residuals both sequences are NaN beyond lag 0.
    """
    x = clean_residuals(residuals)
    if max_lag < 1:
        raise ConfigurationError(f"max_lag must be >= 1, got {max_lag}")
    acf_lag = max(0, min(max_lag, len(x) - 1))
    pacf_lag = max(0, min(max_lag, len(x) // 2 - 1))

    if is_degenerate(x, scale):
        acf_values = np.full(acf_lag + 1, np.nan)
        pacf_values = np.full(pacf_lag + 1, np.nan)
        acf_values[:1] = 1.0
        pacf_values[:1] = 1.0
        return acf_values, pacf_values

    acf_values = acf(x, nlags=acf_lag, fft=False)
    if pacf_lag >= 1:
        pacf_values = pacf(x, nlags=pacf_lag, method="ywm")
    else:
        pacf_values = np.ones(1)
    return np.asarray(acf_values), np.asarray(pacf_values)


def ljung_box(
    residuals: np.ndarray,
    lag: int = DEFAULT_MAX_LAG,
    fitdf: int = 0,
    scale: float | None = None,
) -> LjungBoxResult:
    """Ljung-Box test for autocorrelation up to ``lag``.

    Args:
        residuals: Residual sequence (NaN positions are dropped).
        lag: Number of autocorrelations tested.
        fitdf: Number of fitted ARMA parameters; the chi-squared reference
            distribution has ``lag - fitdf`` degrees of freedom.
        scale: Mean square of the fitted series, see ``is_degenerate``.

    Raises:
        ConfigurationError: If ``lag < 1``, ``lag >= n`` or
            ``lag - fitdf <= 0``.
    """
    x = clean_residuals(residuals)
    n = len(x)
    df = lag - fitdf
    if lag < 1:
        raise ConfigurationError(f"Ljung-Box lag must be >= 1, got {lag}")
    if df <= 0:
        raise ConfigurationError(
            f"Ljung-Box needs lag > fitdf, got lag={lag}, fitdf={fitdf}"
        )

    if is_degenerate(x, scale):
        logger.info("Residual variance is zero; Ljung-Box test is not informative")
        return LjungBoxResult(
            statistic=float("nan"), p_value=float("nan"), lag=lag, df=df, n=n, degenerate=True,
        )
    if lag >= n:
        raise ConfigurationError(f"Ljung-Box lag {lag} must be smaller than n={n}")

    table = acorr_ljungbox(x, lags=[lag], model_df=fitdf, return_df=True)
    statistic = float(table["lb_stat"].iloc[0])
    p_value = float(table["lb_pvalue"].iloc[0])
    return LjungBoxResult(statistic=statistic, p_value=p_value, lag=lag, df=df, n=n)


def distribution_summary(
    residuals: np.ndarray,
    bins: int = 20,
    scale: float | None = None,
) -> DistributionSummary:
    """Histogram counts/densities with KDE and normal-fit overlays."""
    x = clean_residuals(residuals)
    if bins < 1:
        raise ConfigurationError(f"bins must be >= 1, got {bins}")
    if len(x) == 0:
        raise ConfigurationError("No defined residuals to summarize")

    counts, edges = np.histogram(x, bins=bins)
    density, _ = np.histogram(x, bins=edges, density=True)
    mean = float(np.mean(x))
    std = float(np.std(x, ddof=1)) if len(x) > 1 else 0.0

    if is_degenerate(x, scale):
        return DistributionSummary(
            counts=counts, density=density, edges=edges, mean=mean, std=0.0,
            skewness=float("nan"), kurtosis=float("nan"),
            grid=np.array([mean]), kde=None, normal_pdf=None,
        )

    grid = np.linspace(x.min() - std, x.max() + std, 200)
    shapiro_pvalue = None
    if len(x) >= 3:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            shapiro_pvalue = float(stats.shapiro(x[:5000]).pvalue)

    return DistributionSummary(
        counts=counts,
        density=density,
        edges=edges,
        mean=mean,
        std=std,
        skewness=float(stats.skew(x)),
        kurtosis=float(stats.kurtosis(x)),
        grid=grid,
        kde=stats.gaussian_kde(x)(grid),
        normal_pdf=stats.norm.pdf(grid, mean, std),
        shapiro_pvalue=shapiro_pvalue,
    )


def normal_plotting_positions(n: int) -> np.ndarray:
    """Probabilities (i - a) / (n + 1 - 2a), a = 3/8 for n <= 10 else 1/2."""
    a = 3.0 / 8.0 if n <= 10 else 0.5
    return (np.arange(1, n + 1) - a) / (n + 1 - 2 * a)


def qq_comparison(residuals: np.ndarray) -> QQComparison:
    """Normal QQ points and the quartile reference line.

    slope     = (Q3 - Q1) / (z_0.75 - z_0.25)
    intercept = Q1 - slope * z_0.25
    """
    x = clean_residuals(residuals)
    if len(x) == 0:
        raise ConfigurationError("No defined residuals for a QQ comparison")

    theoretical = stats.norm.ppf(normal_plotting_positions(len(x)))
    sample = np.sort(x)
    y_q = np.quantile(x, [0.25, 0.75])
    z_q = stats.norm.ppf([0.25, 0.75])
    slope = float((y_q[1] - y_q[0]) / (z_q[1] - z_q[0]))
    intercept = float(y_q[0] - slope * z_q[0])
    return QQComparison(theoretical=theoretical, sample=sample, slope=slope, intercept=intercept)


def diagnose(
    source: FittedModel | np.ndarray,
    max_lag: int = DEFAULT_MAX_LAG,
    lb_lag: int = DEFAULT_MAX_LAG,
    fitdf: int | None = None,
    bins: int = 20,
    name: str = "",
) -> DiagnosticReport:
    """Run every residual diagnostic.

    Args:
        source: A fitted model or a raw residual array. For a model its
            diagnostic residuals and parameter count are used, and
            degeneracy is judged against the mean square of its series.
        max_lag: Largest ACF/PACF lag.
        lb_lag: Ljung-Box lag, capped at n - 1.
        fitdf: Ljung-Box degrees-of-freedom adjustment. Defaults to the
            model's ``n_params`` (0 for a raw array).
        bins: Histogram bin count.
        name: Label for raw arrays.
    """
    scale = None
    if isinstance(source, FittedModel):
        residuals = source.diagnostic_residuals()
        name = name or source.name
        fitdf = source.n_params if fitdf is None else fitdf
        scale = float(np.mean(np.asarray(source.series.values, dtype=np.float64) ** 2))
    else:
        residuals = clean_residuals(source)
        fitdf = 0 if fitdf is None else fitdf

    n = len(residuals)
    if lb_lag >= n:
        logger.info(f"{name}: Ljung-Box lag {lb_lag} capped at n - 1 = {n - 1}")
        lb_lag = n - 1

    acf_values, pacf_values = autocorrelations(residuals, max_lag, scale=scale)
    lb = ljung_box(residuals, lag=lb_lag, fitdf=fitdf, scale=scale)
    report = DiagnosticReport(
        model_name=name,
        n=n,
        acf=acf_values,
        pacf=pacf_values,
        ljung_box=lb,
        distribution=distribution_summary(residuals, bins=bins, scale=scale),
        qq=qq_comparison(residuals),
        residuals=residuals,
    )
    logger.info(
        f"  {name}: Ljung-Box Q={lb.statistic:.3f} (lag={lb.lag}, df={lb.df}), "
        f"p={lb.p_value:.4f}"
    )
    return report
