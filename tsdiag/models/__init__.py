"""Competing model variants sharing the fit / forecast capability.

Variants:
    1. HoltWintersForecaster - exponential smoothing (SES, Holt, Holt-Winters)
    2. ARIMAForecaster - ARIMA/SARIMA with information-criterion order search
    3. GLSForecaster - time (+ season) regression with ARMA errors
"""

from tsdiag.errors import ConfigurationError
from tsdiag.models.arima import ARIMAForecaster
from tsdiag.models.base import FittedModel, Forecast, Forecaster
from tsdiag.models.gls import GLSForecaster, build_design_matrix
from tsdiag.models.holt_winters import HoltWintersForecaster

FORECASTERS: dict[str, type] = {
    HoltWintersForecaster.kind: HoltWintersForecaster,
    ARIMAForecaster.kind: ARIMAForecaster,
    GLSForecaster.kind: GLSForecaster,
}


def get_forecaster(kind: str, config: dict | None = None) -> Forecaster:
    """Instantiate a model variant by its key.

    Raises:
        ConfigurationError: If ``kind`` is not a known variant.
    """
    cls = FORECASTERS.get(kind)
    if cls is None:
        raise ConfigurationError(
            f"Unknown model kind '{kind}'. Supported: {list(FORECASTERS.keys())}"
        )
    return cls(config or {})


__all__ = [
    "ARIMAForecaster",
    "FORECASTERS",
    "FittedModel",
    "Forecast",
    "Forecaster",
    "GLSForecaster",
    "HoltWintersForecaster",
    "build_design_matrix",
    "get_forecaster",
]
