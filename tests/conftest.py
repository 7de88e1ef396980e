"""Shared fixtures for the test suite.

Provides small real and synthetic series plus configuration dicts that
mirror the case-study schema, so tests run without network access.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

# Ensure project root is on the path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tsdiag.data.loader import TimeSeries, make_series  # noqa: E402


# Age at death of successive kings of England (42 values)
KINGS = [
    60, 43, 67, 50, 56, 42, 50, 65, 68, 43, 65, 34, 47, 34, 49, 41, 13, 35, 53, 56, 16,
    43, 69, 59, 48, 59, 86, 55, 68, 51, 33, 49, 67, 77, 81, 67, 71, 81, 68, 70, 77, 56,
]


# ---------------------------------------------------------------------------
#  Sample series
# ---------------------------------------------------------------------------

@pytest.fixture
def kings() -> TimeSeries:
    """Annual-style series without trend or season."""
    return make_series(KINGS, frequency=1, start=1, name="kings")


@pytest.fixture
def seasonal_series() -> TimeSeries:
    """Eight years of monthly data: linear trend + fixed season + noise."""
    rng = np.random.default_rng(42)
    n = 96
    t = np.arange(n)
    season = 10 * np.sin(2 * np.pi * t / 12)
    values = 100 + 0.5 * t + season + rng.normal(0, 1, n)
    return make_series(values, frequency=12, start=(1990, 1), name="monthly")


@pytest.fixture
def ar1_series() -> TimeSeries:
    """Stationary AR(1) with phi = 0.6, n = 200."""
    rng = np.random.default_rng(7)
    n = 200
    eps = rng.normal(0, 1, n)
    x = np.zeros(n)
    for t in range(1, n):
        x[t] = 0.6 * x[t - 1] + eps[t]
    return make_series(x, frequency=1, start=1, name="ar1")


@pytest.fixture
def constant_series() -> TimeSeries:
    """Forty identical observations."""
    return make_series(np.full(40, 7.5), frequency=1, start=1, name="constant")


# ---------------------------------------------------------------------------
#  Sample configurations
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_config() -> dict:
    """Minimal merged case-study config dict."""
    return {
        "case_study": {"name": "kings"},
        "data": {
            "source": "kings.dat",
            "skip": 3,
            "frequency": 1,
            "start": 1,
            "transform": "identity",
        },
        "decomposition": {"mode": "smooth", "window": 3},
        "models": {
            "exponential_smoothing": {"trend": False, "seasonal": False},
            "arima": {"order": [0, 1, 1]},
            "gls": {"enabled": False},
        },
        "forecast": {"horizon": 5, "levels": [80, 95], "back_transform": True},
        "diagnostics": {"max_lag": 10, "lb_lag": 10, "bins": 10},
        "output": {"results_dir": None, "plots": False},
    }


# ---------------------------------------------------------------------------
#  Temp data file fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def kings_file(tmp_path) -> Path:
    """Kings data with three header lines, eight values per line."""
    path = tmp_path / "kings.dat"
    header = "Age of Death of Successive Kings of England\n#starting with William the Conqueror\n#Source: McNeill\n"
    rows = [" ".join(str(v) for v in KINGS[i:i + 8]) for i in range(0, len(KINGS), 8)]
    path.write_text(header + "\n".join(rows) + "\n")
    return path
