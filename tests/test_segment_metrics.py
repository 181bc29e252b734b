"""
Tests for per-category price tertiles and segment-level premiums.
"""

import numpy as np
import pandas as pd
import pytest

from superhost_premium.segment_metrics import (
    PRICE_TIERS,
    assign_price_tertiles,
    fit_segment_interaction_model,
    run_segment_pipeline,
    segment_premiums,
    segment_summary,
)


class TestTertiles:

    def test_ties_at_cut_go_to_lower_tier(self):
        prices = [10.0] * 6 + [20.0] * 4 + [30.0] * 5
        df = pd.DataFrame({
            "room_category": "Entire Place",
            "price_numeric": prices,
            "is_superhost": [i % 2 == 0 for i in range(len(prices))],
        })
        data, cuts = assign_price_tertiles(df)
        assert cuts.iloc[0]["lower_cut"] == pytest.approx(10.0)
        for price, tier in ((10.0, "Cheap"), (20.0, "Medium"), (30.0, "Expensive")):
            assigned = data.loc[data["price_numeric"] == price, "price_tier"].astype(str)
            assert set(assigned) == {tier}

    def test_cut_points_per_category(self, listings):
        data, cuts = assign_price_tertiles(listings)
        cuts = cuts.set_index("room_category")
        assert cuts.loc["Entire Place", "lower_cut"] > cuts.loc["Private Room", "lower_cut"]
        for category, cell in data.groupby("room_category"):
            low, high = np.quantile(cell["price_numeric"], [0.33, 0.67])
            assert (cell.loc[cell["price_tier"] == "Cheap", "price_numeric"] <= low).all()
            assert (cell.loc[cell["price_tier"] == "Expensive", "price_numeric"] > high).all()

    def test_every_listing_gets_one_tier(self, listings):
        data, _ = assign_price_tertiles(listings)
        assert data["price_tier"].notna().all()
        assert list(data["price_tier"].cat.categories) == PRICE_TIERS
        assert data["price_tier"].cat.ordered

    def test_summary(self, listings):
        data, _ = assign_price_tertiles(listings)
        summary = segment_summary(data)
        assert len(summary) == 6
        assert summary["n_listings"].sum() == len(listings)
        assert (summary["min_price"] <= summary["median_price"]).all()


class TestSegmentPremiums:

    def test_one_row_per_cell(self, listings):
        data, _ = assign_price_tertiles(listings)
        table = segment_premiums(data)
        assert len(table) == 6
        assert (table["n_superhost"] + table["n_regular"] == table["total_n"]).all()
        adequate = (table["n_superhost"] >= 30) & (table["n_regular"] >= 30)
        assert (table["adequate_sample"] == adequate).all()

    def test_small_cells_not_tested(self, listings):
        data, _ = assign_price_tertiles(listings)
        table = segment_premiums(data, min_test_n=1000)
        assert not table["tested"].any()
        assert table["p_value"].isna().all()
        assert not table["significant"].any()

    def test_tested_cells_have_p_values(self, listings):
        data, _ = assign_price_tertiles(listings)
        table = segment_premiums(data, min_test_n=2)
        tested = table[table["tested"]]
        assert not tested.empty
        assert tested["p_value"].between(0, 1).all()


class TestInteractionModel:

    def test_only_interaction_terms(self, listings):
        data, _ = assign_price_tertiles(listings)
        _, coefficients = fit_segment_interaction_model(data)
        assert len(coefficients) > 0
        assert coefficients["term"].str.contains(":").all()
        assert "significant" in coefficients.columns

    def test_empty_superhost_tiers_not_estimated(self, listings):
        private_super = listings[
            (listings["room_category"] == "Private Room") & listings["is_superhost"]
        ].sort_values("price_numeric")
        # the five cheapest private Superhost listings all fall in the Cheap tier
        data, _ = assign_price_tertiles(listings.drop(private_super.index[5:]))
        result, coefficients = fit_segment_interaction_model(data)

        coefficients = coefficients.set_index("term")
        missing = [
            f"C(is_superhost)[T.1]:C(room_category)[T.Private Room]:C(price_tier)[T.{tier}]"
            for tier in ("Expensive", "Medium")
        ]
        assert not coefficients.loc[missing, "estimated"].any()
        assert coefficients.loc[missing, "estimate"].isna().all()
        assert not coefficients.loc[missing, "significant"].any()
        estimated = coefficients.drop(index=missing)
        assert estimated["estimated"].all()
        assert np.isfinite(estimated["estimate"]).all()
        assert np.isfinite(result.fittedvalues).all()

    def test_pipeline(self, listings):
        results = run_segment_pipeline(listings)
        assert set(results) >= {"segment_summary", "segment_premiums", "interaction_coefficients", "cut_points"}
        assert len(results["cut_points"]) == 2

    def test_pipeline_with_tiny_superhost_group(self, small_superhost_listings):
        results = run_segment_pipeline(small_superhost_listings)
        premiums = results["segment_premiums"].set_index(["room_category", "price_tier"])
        assert not premiums.loc["Private Room", "tested"].any()
        coefficients = results["interaction_coefficients"]
        assert coefficients.loc[~coefficients["estimated"], "estimate"].isna().all()
