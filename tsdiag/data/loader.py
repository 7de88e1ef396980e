"""Series loading: plain-text observations -> regularly spaced TimeSeries.

Source files hold one observation per whitespace-separated token, with an
optional fixed number of header lines to skip. Sources are either local
paths or http(s) URLs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd
import requests

from tsdiag.errors import LoadError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """Immutable, regularly spaced univariate series.

    The time of observation ``i`` is implied by ``start`` and
    ``frequency``: ``start = (1946, 1)`` with ``frequency = 12`` means
    January 1946, and each following point is one month later.

    Attributes:
        values: Observations, read-only float array.
        frequency: Observations per period (1 annual, 4 quarterly, 12 monthly).
        start: ``(major, minor)`` time of the first observation; ``minor``
            runs from 1 to ``frequency``.
        name: Label used in logs, plots, and tables.
    """

    values: np.ndarray
    frequency: int = 1
    start: tuple[int, int] = (1, 1)
    name: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=np.float64)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.values)

    @property
    def end(self) -> tuple[int, int]:
        """``(major, minor)`` time of the last observation."""
        return self.offset(len(self) - 1)

    def offset(self, steps: int) -> tuple[int, int]:
        """``(major, minor)`` time ``steps`` observations after the start."""
        position = (self.start[1] - 1) + steps
        return (self.start[0] + position // self.frequency, position % self.frequency + 1)

    def time_index(self, n: int | None = None, offset: int = 0) -> np.ndarray:
        """Fractional times ``major + (minor - 1) / frequency``.

        Args:
            n: Number of points (default: the series length).
            offset: Index of the first point relative to the series start.
        """
        n = len(self) if n is None else n
        first = self.start[0] + (self.start[1] - 1) / self.frequency
        return first + (np.arange(n) + offset) / self.frequency

    def cycle(self, n: int | None = None, offset: int = 0) -> np.ndarray:
        """Phase within the period (1..frequency) of each point."""
        n = len(self) if n is None else n
        return (self.start[1] - 1 + offset + np.arange(n)) % self.frequency + 1

    def with_values(self, values: np.ndarray, name: str | None = None) -> TimeSeries:
        """New series on the same time grid with different values."""
        return TimeSeries(
            values=values,
            frequency=self.frequency,
            start=self.start,
            name=self.name if name is None else name,
        )

    def to_pandas(self) -> pd.Series:
        """Values as a pandas Series indexed by fractional time."""
        return pd.Series(np.array(self.values), index=self.time_index(), name=self.name or None)


def _read_text(source: str | Path) -> str:
    source_str = str(source)
    if source_str.startswith(("http://", "https://")):
        logger.info(f"Fetching {source_str}")
        try:
            response = requests.get(source_str, timeout=REQUEST_TIMEOUT_SECONDS)
            response.raise_for_status()
        except requests.RequestException as e:
            raise LoadError(f"Could not fetch {source_str}: {e}") from e
        return response.text

    path = Path(source)
    if not path.exists():
        raise LoadError(f"Data file not found: {path}")
    return path.read_text(encoding="utf-8")


def read_observations(source: str | Path, skip: int = 0) -> np.ndarray:
    """Read whitespace-separated numeric tokens from a file or URL.

    Args:
        source: Local path or http(s) URL.
        skip: Number of leading header lines to ignore.

    Returns:
        1-D float array of observations in file order.

    Raises:
        LoadError: If the source is unreachable, contains a non-numeric
            token, or yields no observations.
    """
    if skip < 0:
        raise LoadError(f"skip must be >= 0, got {skip}")

    lines = _read_text(source).splitlines()[skip:]
    tokens = " ".join(lines).split()
    try:
        values = np.array([float(tok) for tok in tokens], dtype=np.float64)
    except ValueError as e:
        raise LoadError(f"Non-numeric token in {source}: {e}") from e

    if values.size == 0:
        raise LoadError(f"No observations found in {source} (skipped {skip} lines)")
    return values


def make_series(
    values,
    frequency: int = 1,
    start: tuple[int, int] | list[int] | int = (1, 1),
    name: str = "",
) -> TimeSeries:
    """Wrap raw observations as a TimeSeries.

    Args:
        values: Sequence of numeric observations.
        frequency: Observations per period, must be positive.
        start: ``(major, minor)`` start time, or a bare ``major``.
        name: Series label.

    Raises:
        LoadError: If there are no observations, the frequency is not
            positive, or any observation is missing/non-finite.
    """
    arr = np.asarray(values, dtype=np.float64).ravel()
    if arr.size == 0:
        raise LoadError("Cannot build a series from zero observations")
    if int(frequency) != frequency or frequency <= 0:
        raise LoadError(f"frequency must be a positive integer, got {frequency}")
    if not np.isfinite(arr).all():
        raise LoadError(
            f"Series must be regularly spaced without gaps; "
            f"found {int((~np.isfinite(arr)).sum())} missing or non-finite values"
        )

    if isinstance(start, int):
        start_pair = (start, 1)
    else:
        start_pair = (int(start[0]), int(start[1]) if len(start) > 1 else 1)
    if not 1 <= start_pair[1] <= frequency:
        raise LoadError(f"start period {start_pair[1]} outside 1..{frequency}")

    return TimeSeries(values=arr, frequency=int(frequency), start=start_pair, name=name)


def load_series(
    source: str | Path,
    frequency: int = 1,
    start: tuple[int, int] | list[int] | int = (1, 1),
    skip: int = 0,
    name: str = "",
) -> TimeSeries:
    """Read a plain-text source and wrap it as a TimeSeries."""
    values = read_observations(source, skip=skip)
    series = make_series(values, frequency=frequency, start=start, name=name)
    logger.info(
        f"Loaded {name or source}: {len(series)} observations, "
        f"frequency={series.frequency}, start={series.start}, end={series.end}"
    )
    return series
