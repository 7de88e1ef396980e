"""Time-series decomposition, model fitting, and residual diagnostics.

One parameterized recipe applied to independent case studies:

    load -> (log) transform -> decompose -> fit {ES, ARIMA, GLS}
         -> forecast -> residual diagnostics -> SSE comparison
"""

from tsdiag.errors import (
    ConfigurationError,
    ConvergenceError,
    DomainError,
    LoadError,
    TsDiagError,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConvergenceError",
    "DomainError",
    "LoadError",
    "TsDiagError",
    "__version__",
]
