"""
Tests for the quantile regression engine.
"""

import logging

import numpy as np
import pandas as pd
import pytest

from superhost_premium.advanced_metrics import (
    QUANTILE_FORMULA,
    bootstrap_quantreg_se,
    check_quantile_monotonicity,
    prepare_quantile_df,
    representative_grid,
    run_quantile_pipeline,
)
from superhost_premium.core_metrics import SingularDesignError


@pytest.fixture
def quantile_results(listings):
    return run_quantile_pipeline(listings, seed=11, quantiles=(0.25, 0.5, 0.9), n_boot=20)


class TestPreparation:

    def test_model_frame(self, listings):
        work = prepare_quantile_df(listings)
        assert work["reviews_scaled"].mean() == pytest.approx(0.0, abs=1e-9)
        assert set(work["is_superhost"].unique()) == {0, 1}
        assert work["neighbourhood_group"].nunique() == 5

    def test_representative_grid(self, listings):
        grid = representative_grid(prepare_quantile_df(listings))
        assert len(grid) == 4
        assert grid["neighbourhood_group"].nunique() == 1
        assert (grid["reviews_scaled"] == 0).all()


class TestQuantilePipeline:

    def test_tables(self, quantile_results):
        premiums = quantile_results["premium_table"]
        assert len(premiums) == 6
        assert set(premiums["quantile"]) == {0.25, 0.5, 0.9}
        assert len(quantile_results["comparison"]) == 8
        assert set(quantile_results["models"]) == {"q_0.25", "q_0.5", "q_0.9"}
        assert len(quantile_results["method_comparison"]) == 4

    def test_coefficients_have_bootstrap_errors(self, quantile_results):
        coefs = quantile_results["coef_table"]
        assert list(coefs.columns) == ["quantile", "term", "estimate", "std_error", "t_value", "p_value"]
        superhost = coefs[coefs["term"] == "is_superhost"]
        assert len(superhost) == 3
        assert (superhost["std_error"] > 0).all()
        assert superhost["p_value"].between(0, 1).all()

    def test_ols_baseline_recovers_mean_difference(self, quantile_results):
        # neighbourhood and review patterns are identical across groups
        ols = quantile_results["ols_premiums"].set_index("room_category")
        assert ols.loc["Entire Place", "premium_absolute"] == pytest.approx(24.0, abs=1e-4)
        assert ols.loc["Private Room", "premium_absolute"] == pytest.approx(74.3 - 95.5, abs=1e-4)
        assert (quantile_results["ols_premiums"]["quantile"] == "OLS_Mean").all()

    def test_premium_definition(self, quantile_results):
        premiums = quantile_results["premium_table"]
        expected = (premiums["superhost_price"] - premiums["regular_host_price"]) / premiums["regular_host_price"] * 100
        np.testing.assert_allclose(premiums["premium_percentage"], expected)

    def test_crossing_check_shape(self, quantile_results):
        check = quantile_results["crossing_check"]
        assert len(check) == 4
        assert check["monotonic"].dtype == bool

    def test_bootstrap_reproducible(self, listings):
        work = prepare_quantile_df(listings)
        first = bootstrap_quantreg_se(work, QUANTILE_FORMULA, 0.5, seed=5, n_boot=10)
        second = bootstrap_quantreg_se(work, QUANTILE_FORMULA, 0.5, seed=5, n_boot=10)
        pd.testing.assert_series_equal(first, second)

    def test_singular_design_rejected(self, listings):
        flat_reviews = listings.assign(number_of_reviews=0.0)
        with pytest.raises(SingularDesignError):
            run_quantile_pipeline(flat_reviews, seed=0, quantiles=(0.5,), n_boot=5)


class TestMonotonicity:

    def test_crossing_flagged_not_raised(self, caplog):
        premiums = pd.DataFrame({
            "quantile": [0.25, 0.5, 0.9],
            "room_category": "Entire Place",
            "regular_host_price": [90.0, 120.0, 110.0],
            "superhost_price": [100.0, 130.0, 200.0],
        })
        with caplog.at_level(logging.WARNING):
            check = check_quantile_monotonicity(premiums).set_index("host_type")
        assert not check.loc["Regular Host", "monotonic"]
        assert check.loc["Superhost", "monotonic"]
        assert "Quantile crossing" in caplog.text

    def test_ols_rows_ignored(self):
        premiums = pd.DataFrame({
            "quantile": [0.25, 0.5, "OLS_Mean"],
            "room_category": "Private Room",
            "regular_host_price": [50.0, 60.0, 10.0],
            "superhost_price": [55.0, 65.0, 10.0],
        })
        check = check_quantile_monotonicity(premiums)
        assert check["monotonic"].all()
        assert check.iloc[0]["quantiles"] == [0.25, 0.5]
