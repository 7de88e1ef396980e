"""Tests for residual diagnostics and SSE comparison."""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from tsdiag.errors import ConfigurationError
from tsdiag.evaluation.comparison import compare_case_studies, compare_models
from tsdiag.evaluation.diagnostics import (
    autocorrelations,
    diagnose,
    distribution_summary,
    is_degenerate,
    ljung_box,
    normal_plotting_positions,
    qq_comparison,
)
from tsdiag.models import ARIMAForecaster, HoltWintersForecaster


# ---------------------------------------------------------------------------
#  Ljung-Box
# ---------------------------------------------------------------------------

class TestLjungBox:
    """Tests for the portmanteau test."""

    def test_statistic_and_pvalue_ranges(self):
        """Q is non-negative and the p-value is a probability."""
        x = np.random.default_rng(0).normal(0, 1, 100)
        result = ljung_box(x, lag=10)
        assert result.statistic >= 0
        assert 0.0 <= result.p_value <= 1.0
        assert result.df == 10
        assert result.n == 100

    def test_matches_formula(self):
        """Q = n(n+2) sum rho_k^2 / (n-k) against chi2(lag - fitdf)."""
        x = np.random.default_rng(1).normal(0, 1, 80)
        lag, fitdf = 12, 2
        n = len(x)
        xc = x - x.mean()
        denom = np.sum(xc ** 2)
        rho = np.array([np.sum(xc[k:] * xc[:-k]) / denom for k in range(1, lag + 1)])
        q = n * (n + 2) * np.sum(rho ** 2 / (n - np.arange(1, lag + 1)))

        result = ljung_box(x, lag=lag, fitdf=fitdf)
        assert result.statistic == pytest.approx(q)
        assert result.p_value == pytest.approx(stats.chi2.sf(q, lag - fitdf))
        assert result.df == lag - fitdf

    def test_autocorrelated_residuals_rejected(self, ar1_series):
        """An AR(1) sample is not white noise."""
        result = ljung_box(ar1_series.values, lag=10)
        assert result.rejects(0.05)

    def test_zero_autocorrelation_gives_pvalue_one(self):
        """Two isolated spikes further apart than the lag have rho_k = 0 for every k tested."""
        x = np.zeros(200)
        x[60], x[140] = 1.0, -1.0
        result = ljung_box(x, lag=10)
        assert not result.degenerate
        assert result.statistic == pytest.approx(0.0, abs=1e-12)
        assert result.p_value > 0.99

    def test_vanishing_autocorrelation_pvalue_near_one(self):
        """A single spike has rho_k of order 1/n, so Q is near 0 and p near 1."""
        x = np.zeros(200)
        x[100] = 1.0
        acf_values, _ = autocorrelations(x, max_lag=10)
        assert np.all(np.abs(acf_values[1:]) < 0.01)
        result = ljung_box(x, lag=10)
        assert result.statistic < 0.1
        assert result.p_value > 0.99

    def test_nan_positions_dropped(self):
        """Undefined leading residuals do not enter the statistic."""
        x = np.random.default_rng(2).normal(0, 1, 50)
        with_nan = np.r_[np.nan, x]
        assert ljung_box(with_nan, lag=5).statistic == pytest.approx(ljung_box(x, lag=5).statistic)

    def test_zero_residuals_are_degenerate(self):
        """Zero variance gives NaN outputs and never rejects."""
        result = ljung_box(np.zeros(30), lag=5)
        assert result.degenerate
        assert np.isnan(result.statistic)
        assert np.isnan(result.p_value)
        assert not result.rejects()

    def test_non_positive_df_raises(self):
        """lag - fitdf must stay positive."""
        x = np.random.default_rng(0).normal(0, 1, 50)
        with pytest.raises(ConfigurationError):
            ljung_box(x, lag=3, fitdf=3)

    def test_lag_not_below_n_raises(self):
        """A lag of n or more has no autocorrelation to test."""
        with pytest.raises(ConfigurationError):
            ljung_box(np.random.default_rng(0).normal(0, 1, 10), lag=10)


# ---------------------------------------------------------------------------
#  Degeneracy
# ---------------------------------------------------------------------------

class TestDegeneracy:
    """Tests for the zero-variance check."""

    def test_exact_zero_variance(self):
        """Constant residuals are degenerate whatever their level."""
        assert is_degenerate(np.zeros(20))
        assert is_degenerate(np.full(20, 3.0))

    def test_optimizer_noise_relative_to_series(self):
        """Noise of order 1e-6 on a series near 7.5 counts as zero variance."""
        noise = 1e-6 * np.random.default_rng(8).normal(0, 1, 40)
        assert is_degenerate(noise, scale=7.5 ** 2)
        assert ljung_box(noise, lag=5, scale=7.5 ** 2).degenerate

    def test_small_unit_residuals_without_scale(self):
        """Without a series scale, small residuals are judged on their own."""
        noise = 1e-6 * np.random.default_rng(8).normal(0, 1, 40)
        assert not is_degenerate(noise)
        assert not ljung_box(noise, lag=5).degenerate

    def test_single_residual_is_degenerate(self):
        """One residual has no variance to speak of."""
        assert is_degenerate(np.array([0.4]))


# ---------------------------------------------------------------------------
#  ACF / PACF
# ---------------------------------------------------------------------------

class TestAutocorrelations:
    """Tests for the sample ACF and PACF."""

    def test_lag_zero_is_one(self, ar1_series):
        """Both sequences start at 1 and the AR(1) ACF at lag 1 is near phi."""
        acf_values, pacf_values = autocorrelations(ar1_series.values, max_lag=10)
        assert acf_values[0] == pytest.approx(1.0)
        assert pacf_values[0] == pytest.approx(1.0)
        assert len(acf_values) == 11
        assert acf_values[1] == pytest.approx(0.6, abs=0.15)

    def test_lags_capped_by_length(self):
        """ACF stops at n - 1 and PACF at n // 2 - 1."""
        x = np.random.default_rng(0).normal(0, 1, 12)
        acf_values, pacf_values = autocorrelations(x, max_lag=20)
        assert len(acf_values) == 12
        assert len(pacf_values) == 6

    def test_degenerate(self):
        """Zero-variance residuals have undefined autocorrelations."""
        acf_values, _ = autocorrelations(np.ones(20), max_lag=5)
        assert acf_values[0] == 1.0
        assert np.isnan(acf_values[1:]).all()


# ---------------------------------------------------------------------------
#  Distribution and QQ
# ---------------------------------------------------------------------------

class TestDistribution:
    """Tests for the histogram and QQ summaries."""

    def test_histogram_density_integrates_to_one(self):
        """Density histogram has unit area and the KDE spans the grid."""
        x = np.random.default_rng(3).normal(0, 2, 300)
        dist = distribution_summary(x, bins=15)
        assert dist.counts.sum() == 300
        assert np.sum(dist.density * np.diff(dist.edges)) == pytest.approx(1.0)
        assert dist.kde.shape == dist.grid.shape
        assert dist.std == pytest.approx(2.0, rel=0.15)
        assert 0.0 <= dist.shapiro_pvalue <= 1.0

    def test_degenerate_has_no_curves(self):
        """No KDE or normal curve for zero-variance residuals."""
        dist = distribution_summary(np.zeros(10))
        assert dist.kde is None
        assert dist.normal_pdf is None

    def test_plotting_positions(self):
        """a = 3/8 up to ten points, 1/2 beyond."""
        np.testing.assert_allclose(
            normal_plotting_positions(5), (np.arange(1, 6) - 0.375) / (5 + 0.25)
        )
        np.testing.assert_allclose(
            normal_plotting_positions(20), (np.arange(1, 21) - 0.5) / 20
        )

    def test_qq_line_through_quartiles(self):
        """The reference line passes through the sample quartiles."""
        x = np.random.default_rng(4).normal(5, 3, 200)
        qq = qq_comparison(x)
        q1, q3 = np.quantile(x, [0.25, 0.75])
        z1, z3 = stats.norm.ppf([0.25, 0.75])
        assert qq.line(z1) == pytest.approx(q1)
        assert qq.line(z3) == pytest.approx(q3)
        assert np.all(np.diff(qq.sample) >= 0)
        assert np.all(np.diff(qq.theoretical) > 0)


# ---------------------------------------------------------------------------
#  diagnose
# ---------------------------------------------------------------------------

class TestDiagnose:
    """Tests for the bundled diagnostics of one fitted model."""

    def test_fitdf_from_model(self, kings):
        """The model's parameter count sets the Ljung-Box adjustment."""
        model = ARIMAForecaster({"order": [0, 1, 1]}).fit(kings)
        report = diagnose(model, max_lag=10, lb_lag=10)
        assert report.n == 41
        assert report.ljung_box.df == 9
        assert report.model_name == "ARIMA(0,1,1)"
        summary = report.summary()
        assert summary["n_residuals"] == 41
        assert summary["lb_df"] == 9

    def test_raw_array(self):
        """A raw array is diagnosed with no adjustment."""
        x = np.random.default_rng(5).normal(0, 1, 60)
        report = diagnose(x, lb_lag=10, name="noise")
        assert report.ljung_box.df == 10
        assert report.model_name == "noise"

    def test_constant_series_mean_only_fit(self):
        """Residuals of a mean-only fit to a constant series are all zero."""
        x = np.full(40, 7.5)
        report = diagnose(x - x.mean(), name="constant")
        assert report.ljung_box.degenerate
        assert report.distribution.std == 0.0
        assert len(report.qq.sample) == 40

    def test_constant_series_fixed_white_noise_order(self, constant_series):
        """ARIMA(0,0,0) on a constant series fits the mean and is degenerate."""
        model = ARIMAForecaster({"order": [0, 0, 0]}).fit(constant_series)
        assert model.name == "ARIMA(0,0,0)"
        assert model.coefficients["intercept"] == pytest.approx(7.5)
        assert model.sse == 0.0
        report = diagnose(model, max_lag=10, lb_lag=10)
        assert report.ljung_box.degenerate
        assert not report.ljung_box.rejects()
        assert report.distribution.kde is None

    def test_constant_series_order_search(self, constant_series):
        """The order search on a constant series also ends in a degenerate report."""
        model = ARIMAForecaster().fit(constant_series)
        assert model.extra["order"] == (0, 0, 0)
        assert model.n_params == 0
        report = diagnose(model, max_lag=10, lb_lag=10)
        assert report.ljung_box.degenerate
        assert np.isnan(report.ljung_box.p_value)
        assert np.isnan(report.acf[1:]).all()

    def test_lag_capped_at_n_minus_one(self):
        """Short residual sequences lower the Ljung-Box lag."""
        x = np.random.default_rng(6).normal(0, 1, 15)
        report = diagnose(x, max_lag=20, lb_lag=20)
        assert report.ljung_box.lag == 14


# ---------------------------------------------------------------------------
#  Comparison tables
# ---------------------------------------------------------------------------

class TestComparison:
    """Tests for the SSE tables."""

    @pytest.fixture
    def kings_models(self, kings):
        return [
            HoltWintersForecaster({"trend": False, "seasonal": False}).fit(kings),
            ARIMAForecaster({"order": [0, 1, 1]}).fit(kings),
        ]

    def test_table_columns(self, kings_models):
        """One row per model, indexed by display name."""
        table = compare_models(kings_models)
        assert list(table.columns) == ["kind", "n_residuals", "sse"]
        assert list(table.index) == ["SES", "ARIMA(0,1,1)"]
        assert table.loc["SES", "sse"] == pytest.approx(kings_models[0].sse)

    def test_sse_is_raw_sum(self, kings_models):
        """SSE is the unweighted sum over defined residuals."""
        table = compare_models(kings_models)
        model = kings_models[1]
        expected = np.nansum(model.residuals ** 2)
        assert table.loc[model.name, "sse"] == pytest.approx(expected)

    def test_writes_outputs(self, kings_models, tmp_path):
        """CSV table and text summary land in the output directory."""
        compare_models(kings_models, tmp_path)
        assert (tmp_path / "comparison_table.csv").exists()
        text = (tmp_path / "comparison_summary.txt").read_text()
        assert "Lowest SSE" in text
        loaded = pd.read_csv(tmp_path / "comparison_table.csv", index_col="Model")
        assert len(loaded) == 2

    def test_empty_table(self):
        """No models give an empty table."""
        table = compare_models([])
        assert table.empty

    def test_case_studies_long_table(self, kings_models, tmp_path):
        """Failed case studies appear with their status."""
        table = compare_models(kings_models)
        combined = compare_case_studies(
            {"kings": table},
            statuses={"kings": "ok", "broken": "failed: LoadError: missing"},
            output_dir=tmp_path,
        )
        assert list(combined.columns) == ["CaseStudy", "Model", "kind", "n_residuals", "sse", "status"]
        assert len(combined) == 3
        failed = combined[combined["CaseStudy"] == "broken"]
        assert failed["status"].iloc[0].startswith("failed")
        assert (tmp_path / "case_study_table.csv").exists()
