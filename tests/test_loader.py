"""Tests for series loading and transforms."""

import numpy as np
import pytest
import requests

from conftest import KINGS
from tsdiag.data import loader
from tsdiag.data.loader import TimeSeries, load_series, make_series, read_observations
from tsdiag.data.transform import apply_transform, invert_forecast
from tsdiag.errors import ConfigurationError, DomainError, LoadError
from tsdiag.models.base import Forecast


# ---------------------------------------------------------------------------
#  read_observations / load_series
# ---------------------------------------------------------------------------

class TestReadObservations:
    """Tests for plain-text parsing."""

    def test_skips_header_lines(self, kings_file):
        values = read_observations(kings_file, skip=3)
        assert len(values) == 42
        np.testing.assert_array_equal(values, np.array(KINGS, dtype=float))

    def test_header_not_skipped_raises(self, kings_file):
        """The title line is not numeric."""
        with pytest.raises(LoadError):
            read_observations(kings_file, skip=0)

    def test_non_numeric_token_raises(self, tmp_path):
        path = tmp_path / "bad.dat"
        path.write_text("1 2 x 4\n")
        with pytest.raises(LoadError, match="Non-numeric"):
            read_observations(path)

    def test_empty_after_skip_raises(self, tmp_path):
        path = tmp_path / "empty.dat"
        path.write_text("header\n\n")
        with pytest.raises(LoadError, match="No observations"):
            read_observations(path, skip=1)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(LoadError, match="not found"):
            read_observations(tmp_path / "nope.dat")

    def test_negative_skip_raises(self, kings_file):
        with pytest.raises(LoadError):
            read_observations(kings_file, skip=-1)

    def test_url_fetch_failure_is_load_error(self, monkeypatch):
        def fail(*args, **kwargs):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(loader.requests, "get", fail)
        with pytest.raises(LoadError, match="Could not fetch"):
            read_observations("https://example.invalid/series.dat")

    def test_url_text_is_parsed(self, monkeypatch):
        class FakeResponse:
            text = "title\n1.5 2.5\n3.5\n"

            def raise_for_status(self):
                return None

        monkeypatch.setattr(loader.requests, "get", lambda *a, **k: FakeResponse())
        values = read_observations("https://example.invalid/series.dat", skip=1)
        np.testing.assert_allclose(values, [1.5, 2.5, 3.5])

    def test_load_series_sets_time_grid(self, kings_file):
        series = load_series(kings_file, frequency=1, start=1, skip=3, name="kings")
        assert len(series) == 42
        assert series.start == (1, 1)
        assert series.end == (42, 1)
        assert series.name == "kings"


# ---------------------------------------------------------------------------
#  make_series / TimeSeries
# ---------------------------------------------------------------------------

class TestTimeSeries:
    """Tests for series construction and the implied time grid."""

    def test_values_are_read_only(self, kings):
        with pytest.raises(ValueError):
            kings.values[0] = 0.0

    def test_empty_raises(self):
        with pytest.raises(LoadError):
            make_series([])

    def test_nan_raises(self):
        with pytest.raises(LoadError, match="missing"):
            make_series([1.0, np.nan, 3.0])

    def test_bad_frequency_raises(self):
        with pytest.raises(LoadError):
            make_series([1.0, 2.0], frequency=0)

    def test_start_period_out_of_range_raises(self):
        with pytest.raises(LoadError):
            make_series([1.0, 2.0], frequency=12, start=(1990, 13))

    def test_monthly_time_index(self):
        series = make_series(np.arange(14), frequency=12, start=(1946, 1))
        t = series.time_index()
        assert t[0] == pytest.approx(1946.0)
        assert t[12] == pytest.approx(1947.0)
        assert series.end == (1947, 2)

    def test_cycle_with_offset_start(self):
        series = make_series(np.arange(6), frequency=4, start=(2000, 3))
        np.testing.assert_array_equal(series.cycle(), [3, 4, 1, 2, 3, 4])
        np.testing.assert_array_equal(series.cycle(2, offset=6), [1, 2])

    def test_to_pandas(self, kings):
        s = kings.to_pandas()
        assert len(s) == 42
        assert s.index[0] == pytest.approx(1.0)
        assert s.name == "kings"


# ---------------------------------------------------------------------------
#  Transforms
# ---------------------------------------------------------------------------

class TestTransform:
    """Tests for identity / log transforms."""

    def test_identity_copies(self, kings):
        out = apply_transform(kings, "identity")
        assert out is not kings
        np.testing.assert_array_equal(out.values, kings.values)

    def test_log_values(self, kings):
        out = apply_transform(kings, "log")
        np.testing.assert_allclose(out.values, np.log(kings.values))
        assert out.frequency == kings.frequency
        assert out.start == kings.start

    def test_log_of_non_positive_raises(self):
        series = make_series([1.0, 0.0, 2.0])
        with pytest.raises(DomainError):
            apply_transform(series, "log")

    def test_source_untouched(self, kings):
        before = np.array(kings.values)
        apply_transform(kings, "log")
        np.testing.assert_array_equal(kings.values, before)

    def test_unknown_transform_raises(self, kings):
        with pytest.raises(ConfigurationError):
            apply_transform(kings, "sqrt")

    def test_invert_log_forecast(self):
        forecast = Forecast(
            mean=np.log(np.array([10.0, 20.0])),
            lower=np.log(np.array([[5.0], [8.0]])),
            upper=np.log(np.array([[15.0], [40.0]])),
            levels=(95.0,),
            model_name="m",
            time_index=np.array([1.0, 2.0]),
        )
        out = invert_forecast(forecast, "log")
        np.testing.assert_allclose(out.mean, [10.0, 20.0])
        np.testing.assert_allclose(out.lower[:, 0], [5.0, 8.0])
        np.testing.assert_allclose(out.upper[:, 0], [15.0, 40.0])
        assert invert_forecast(forecast, "identity") is forecast

    def test_time_series_is_a_dataclass(self):
        series = TimeSeries(values=[1, 2, 3])
        assert series.values.dtype == np.float64
        assert len(series) == 3
