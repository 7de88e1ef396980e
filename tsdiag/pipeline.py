"""One parameterized case-study recipe, applied to independent series.

Per case study, strictly top to bottom:

    1. load            plain-text observations -> TimeSeries
    2. transform       identity or natural log
    3. decompose       moving-average smoothing or classical decomposition
    4. fit             each enabled model variant, independently
    5. forecast        h steps from every fitted model
    6. diagnose        ACF/PACF, Ljung-Box, distribution, QQ per model
    7. compare         raw SSE table

Case studies share no state. ``run_case_studies`` runs them one after the
other or in a process pool; a failure marks only its own case study.

Public API:
    ``CaseStudyConfig.from_dict()`` - validated settings from a merged YAML config
    ``run_case_study()``            - the recipe for one case study
    ``run_case_studies()``          - several case studies with failure isolation
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from tsdiag.data.decompose import Decomposition, decompose, smooth
from tsdiag.data.loader import TimeSeries, load_series
from tsdiag.data.transform import TRANSFORMS, apply_transform, invert_forecast
from tsdiag.errors import ConfigurationError, TsDiagError
from tsdiag.evaluation import visualization as viz
from tsdiag.evaluation.comparison import compare_models
from tsdiag.evaluation.diagnostics import DiagnosticReport, diagnose
from tsdiag.models import FORECASTERS, get_forecaster
from tsdiag.models.base import FittedModel, Forecast

logger = logging.getLogger(__name__)

DECOMPOSITION_MODES = ("none", "smooth", "seasonal")


@dataclass(frozen=True)
class CaseStudyConfig:
    """Validated settings for one case study.

    Attributes:
        name: Case-study identifier, also the results sub-directory.
        source: Local path or URL of the plain-text data.
        skip: Header lines to skip in the source.
        frequency: Observations per period. A non-positive value is rejected
            with ``LoadError`` when the series is loaded.
        start: ``(major, minor)`` time of the first observation.
        transform: "identity" or "log".
        decomposition_mode: "none", "smooth" or "seasonal".
        window: Moving-average width for "smooth" mode.
        decomposition_kind: "additive" or "multiplicative" for "seasonal" mode.
        models: Model kind -> model settings, in fitting order.
        horizon: Forecast steps.
        levels: Prediction-interval coverage levels in percent.
        back_transform: Report forecasts on the original scale when a log
            transform was applied.
        max_lag: Largest ACF/PACF lag.
        lb_lag: Ljung-Box lag.
        bins: Residual histogram bins.
        results_dir: Where tables and figures go; ``None`` writes nothing.
        plots: Render figures into ``results_dir``.
    """

    name: str
    source: str | None = None
    skip: int = 0
    frequency: int = 1
    start: tuple[int, int] = (1, 1)
    transform: str = "identity"
    decomposition_mode: str = "none"
    window: int = 3
    decomposition_kind: str = "additive"
    models: dict[str, dict[str, Any]] = field(default_factory=dict)
    horizon: int = 8
    levels: tuple[float, ...] = (80.0, 95.0)
    back_transform: bool = True
    max_lag: int = 20
    lb_lag: int = 20
    bins: int = 20
    results_dir: Path | None = None
    plots: bool = True

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> CaseStudyConfig:
        """Build from a merged config dictionary.

        Raises:
            ConfigurationError: On missing names, unknown transforms,
                decomposition modes or model kinds, and negative horizons.
        """
        case_cfg = config.get("case_study", {})
        data_cfg = config.get("data", {})
        decomp_cfg = config.get("decomposition", {})
        forecast_cfg = config.get("forecast", {})
        diag_cfg = config.get("diagnostics", {})
        output_cfg = config.get("output", {})

        name = case_cfg.get("name")
        if not name:
            raise ConfigurationError("case_study.name is required")

        start = data_cfg.get("start", [1, 1])
        if isinstance(start, int):
            start = [start, 1]

        models: dict[str, dict[str, Any]] = {}
        for kind, model_cfg in (config.get("models") or {}).items():
            if kind not in FORECASTERS:
                raise ConfigurationError(
                    f"Unknown model kind '{kind}' in {name}. Supported: {list(FORECASTERS)}"
                )
            model_cfg = dict(model_cfg or {})
            if model_cfg.pop("enabled", True):
                models[kind] = model_cfg

        results_dir = output_cfg.get("results_dir")
        cfg = cls(
            name=str(name),
            source=data_cfg.get("source"),
            skip=int(data_cfg.get("skip", 0)),
            frequency=int(data_cfg.get("frequency", 1)),
            start=(int(start[0]), int(start[1]) if len(start) > 1 else 1),
            transform=str(data_cfg.get("transform", "identity")),
            decomposition_mode=str(decomp_cfg.get("mode", "none")),
            window=int(decomp_cfg.get("window", 3)),
            decomposition_kind=str(decomp_cfg.get("kind", "additive")),
            models=models,
            horizon=int(forecast_cfg.get("horizon", 8)),
            levels=tuple(float(v) for v in forecast_cfg.get("levels", [80, 95])),
            back_transform=bool(forecast_cfg.get("back_transform", True)),
            max_lag=int(diag_cfg.get("max_lag", 20)),
            lb_lag=int(diag_cfg.get("lb_lag", 20)),
            bins=int(diag_cfg.get("bins", 20)),
            results_dir=Path(results_dir) / str(name) if results_dir else None,
            plots=bool(output_cfg.get("plots", True)),
        )
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.transform not in TRANSFORMS:
            raise ConfigurationError(
                f"Unknown transform '{self.transform}'. Supported: {list(TRANSFORMS)}"
            )
        if self.decomposition_mode not in DECOMPOSITION_MODES:
            raise ConfigurationError(
                f"Unknown decomposition mode '{self.decomposition_mode}'. "
                f"Supported: {list(DECOMPOSITION_MODES)}"
            )
        if self.decomposition_mode == "seasonal" and self.frequency <= 1:
            raise ConfigurationError(
                f"Seasonal decomposition needs frequency > 1, got {self.frequency}"
            )
        if self.horizon < 0:
            raise ConfigurationError(f"Forecast horizon must be >= 0, got {self.horizon}")


@dataclass
class CaseStudyResult:
    """Everything derived for one case study.

    ``error`` is set, and the derived fields are left empty, when the case
    study failed.
    """

    name: str
    series: TimeSeries | None = None
    transformed: TimeSeries | None = None
    decomposition: Decomposition | None = None
    models: dict[str, FittedModel] = field(default_factory=dict)
    forecasts: dict[str, Forecast] = field(default_factory=dict)
    diagnostics: dict[str, DiagnosticReport] = field(default_factory=dict)
    comparison: pd.DataFrame | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else f"failed: {self.error}"


def _decompose(series: TimeSeries, config: CaseStudyConfig) -> Decomposition | None:
    if config.decomposition_mode == "smooth":
        return smooth(series, config.window)
    if config.decomposition_mode == "seasonal":
        return decompose(series, kind=config.decomposition_kind)
    return None


def _render(result: CaseStudyResult, config: CaseStudyConfig, output_dir: Path) -> None:
    plots_dir = output_dir / "plots"
    series = result.series
    transformed = result.transformed
    viz.plot_series(series, plots_dir / "series.png")
    if config.transform != "identity":
        viz.plot_series(transformed, plots_dir / "series_transformed.png")
    if result.decomposition is not None:
        viz.plot_decomposition(transformed, result.decomposition, plots_dir / "decomposition.png")

    for kind, model in result.models.items():
        report = result.diagnostics[kind]
        forecast = result.forecasts[kind]
        on_original_scale = config.back_transform and config.transform != "identity"
        viz.plot_forecast(
            series if on_original_scale else transformed,
            forecast,
            plots_dir / f"{kind}_forecast.png",
            fitted=None if on_original_scale else model.fitted,
        )
        if not report.ljung_box.degenerate:
            viz.plot_acf_pacf(report.residuals, model.name, plots_dir / f"{kind}_acf_pacf.png",
                              max_lag=config.max_lag)
        viz.plot_residual_distribution(report, plots_dir / f"{kind}_residual_distribution.png")
        viz.plot_qq(report, plots_dir / f"{kind}_qq.png")

    if result.comparison is not None and not result.comparison.empty:
        viz.plot_sse_comparison(result.comparison, f"{config.name} - SSE by model",
                                plots_dir / "sse_comparison.png")


def run_case_study(
    config: CaseStudyConfig,
    series: TimeSeries | None = None,
) -> CaseStudyResult:
    """Run the full recipe for one case study.

    Args:
        config: Validated case-study settings.
        series: Pre-loaded series; when omitted it is read from
            ``config.source``.

    Returns:
        CaseStudyResult with every derived entity.

    Raises:
        TsDiagError: Any stage failure; nothing is retried.
    """
    if series is None:
        if not config.source:
            raise ConfigurationError(f"{config.name}: data.source is required")
        series = load_series(
            config.source,
            frequency=config.frequency,
            start=config.start,
            skip=config.skip,
            name=config.name,
        )

    result = CaseStudyResult(name=config.name, series=series)
    result.transformed = apply_transform(series, config.transform)
    result.decomposition = _decompose(result.transformed, config)

    for kind, model_cfg in config.models.items():
        forecaster = get_forecaster(kind, model_cfg)
        fitted = forecaster.fit(result.transformed)
        forecast = forecaster.forecast(fitted, config.horizon, config.levels)
        if config.back_transform:
            forecast = invert_forecast(forecast, config.transform)
        result.models[kind] = fitted
        result.forecasts[kind] = forecast
        result.diagnostics[kind] = diagnose(
            fitted, max_lag=config.max_lag, lb_lag=config.lb_lag, bins=config.bins,
        )

    result.comparison = compare_models(list(result.models.values()), config.results_dir)

    if config.results_dir is not None and config.plots:
        _render(result, config, config.results_dir)
        logger.info(f"Figures for {config.name} saved to: {config.results_dir / 'plots'}")

    return result


def _run_isolated(config: CaseStudyConfig) -> CaseStudyResult:
    try:
        return run_case_study(config)
    except TsDiagError as e:
        logger.error(f"Case study {config.name} failed: {type(e).__name__}: {e}")
        return CaseStudyResult(name=config.name, error=f"{type(e).__name__}: {e}")


def run_case_studies(
    configs: list[CaseStudyConfig],
    workers: int = 1,
) -> list[CaseStudyResult]:
    """Run independent case studies, isolating failures.

    Args:
        configs: Case-study settings.
        workers: Number of worker processes; 1 runs sequentially.

    Returns:
        One result per config, in input order. Failed case studies carry
        ``error`` instead of derived entities.
    """
    if workers <= 1:
        return [_run_isolated(cfg) for cfg in configs]

    with ProcessPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_run_isolated, configs))
