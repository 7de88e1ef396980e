"""Exception taxonomy for the time-series case-study pipeline.

Every error is terminal for the case study that raised it. The runner
records the failure for that case study and moves on to the next one;
nothing is retried.
"""


class TsDiagError(Exception):
    """Base class for all pipeline errors."""


class LoadError(TsDiagError):
    """Input could not be read, was empty, or was not numeric."""


class DomainError(TsDiagError):
    """A transform was requested that the data cannot support."""


class ConvergenceError(TsDiagError):
    """An optimizer stopped before converging within its iteration bound."""


class ConfigurationError(TsDiagError):
    """Invalid frequency, order bounds, horizon, or other setting."""
