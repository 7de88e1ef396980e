"""Variance-stabilizing transforms.

A log transform is chosen by the analyst when seasonal and random
fluctuations grow with the level of the series (multiplicative
structure) rather than staying roughly constant (additive structure).
"""

from __future__ import annotations

import numpy as np

from tsdiag.data.loader import TimeSeries
from tsdiag.errors import ConfigurationError, DomainError
from tsdiag.models.base import Forecast

TRANSFORMS = ("identity", "log")


def apply_transform(series: TimeSeries, kind: str = "identity") -> TimeSeries:
    """Return a new series with the transform applied.

    Args:
        series: Source series (left untouched).
        kind: "identity" or "log".

    Raises:
        DomainError: If ``kind == "log"`` and any value is <= 0.
        ConfigurationError: If ``kind`` is not recognized.
    """
    if kind == "identity":
        return series.with_values(series.values)
    if kind == "log":
        n_bad = int((series.values <= 0).sum())
        if n_bad:
            raise DomainError(
                f"Log transform requires positive values; "
                f"{series.name or 'series'} has {n_bad} values <= 0"
            )
        return series.with_values(np.log(series.values), name=f"log({series.name})" if series.name else "")
    raise ConfigurationError(f"Unknown transform '{kind}'. Supported: {list(TRANSFORMS)}")


def invert_forecast(forecast: Forecast, kind: str = "identity") -> Forecast:
    """Map a forecast made on the transformed scale back to the original scale.

    Interval bounds are back-transformed pointwise, so a log-scale interval
    becomes an asymmetric interval on the original scale.
    """
    if kind == "identity":
        return forecast
    if kind == "log":
        return Forecast(
            mean=np.exp(forecast.mean),
            lower=np.exp(forecast.lower),
            upper=np.exp(forecast.upper),
            levels=forecast.levels,
            model_name=forecast.model_name,
            time_index=forecast.time_index,
        )
    raise ConfigurationError(f"Unknown transform '{kind}'. Supported: {list(TRANSFORMS)}")
