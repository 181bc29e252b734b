"""
Price-segment interaction analysis: does the Superhost premium vary across
cheap / medium / expensive listings within each room category?
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf

from .core_metrics import (
    ROOM_CATEGORIES,
    DataQualityError,
    check_design_rank,
    coefficient_table,
    premium_pct,
    sig_stars,
)
from .hypothesis_tests import welch_t_test

logger = logging.getLogger(__name__)

PRICE_TIERS = ["Cheap", "Medium", "Expensive"]

INTERACTION_FORMULA = (
    "price_numeric ~ C(is_superhost) * C(room_category) * C(price_tier) + number_of_reviews"
)


def assign_price_tertiles(
    df: pd.DataFrame,
    cuts: tuple[float, float] = (0.33, 0.67),
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split each room category into Cheap / Medium / Expensive at that
    category's own price quantiles. A price equal to a cut point belongs to
    the lower tier.

    Returns (data with an ordered ``price_tier`` column, cut-point table).
    """
    data = df[df["room_category"].isin(ROOM_CATEGORIES)].copy().reset_index(drop=True)
    tiers = pd.Series(index=data.index, dtype=object)
    cut_rows = []
    for room_category in ROOM_CATEGORIES:
        mask = data["room_category"] == room_category
        prices = data.loc[mask, "price_numeric"]
        if prices.empty:
            continue
        low, high = np.quantile(prices.to_numpy(), list(cuts))
        tiers[mask] = np.select(
            [prices <= low, prices <= high],
            PRICE_TIERS[:2],
            default=PRICE_TIERS[2],
        )
        cut_rows.append({
            "room_category": room_category,
            "lower_cut": low,
            "upper_cut": high,
            "n_listings": len(prices),
        })
        logger.info("%s tertile cuts: €%.2f / €%.2f", room_category, low, high)
    data["price_tier"] = pd.Categorical(tiers, categories=PRICE_TIERS, ordered=True)
    return data, pd.DataFrame(cut_rows)


def segment_summary(df: pd.DataFrame) -> pd.DataFrame:
    """Listing count and price range per room category x tier."""
    summary = (
        df.groupby(["room_category", "price_tier"], observed=True)["price_numeric"]
        .agg(n_listings="size", min_price="min", max_price="max",
             mean_price="mean", median_price="median")
        .reset_index()
    )
    summary["price_tier"] = summary["price_tier"].astype(str)
    return summary


def segment_premiums(
    df: pd.DataFrame,
    min_test_n: int = 10,
    adequate_n: int = 30,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Superhost premium and Welch test in each room category x tier cell.

    Cells with fewer than ``min_test_n`` listings on either side are reported
    with ``tested=False`` and NaN test statistics.
    """
    rows = []
    for room_category in ROOM_CATEGORIES:
        for tier in PRICE_TIERS:
            cell = df[(df["room_category"] == room_category) & (df["price_tier"] == tier)]
            superhost = cell.loc[cell["is_superhost"].astype(bool), "price_numeric"]
            regular = cell.loc[~cell["is_superhost"].astype(bool), "price_numeric"]
            n_s, n_r = len(superhost), len(regular)
            superhost_mean = superhost.mean() if n_s else np.nan
            regular_mean = regular.mean() if n_r else np.nan
            row = {
                "room_category": room_category,
                "price_tier": tier,
                "n_superhost": n_s,
                "n_regular": n_r,
                "total_n": len(cell),
                "superhost_mean": superhost_mean,
                "regular_mean": regular_mean,
                "premium_absolute": superhost_mean - regular_mean,
                "premium_percentage": premium_pct(superhost_mean, regular_mean),
                "price_range_min": cell["price_numeric"].min() if len(cell) else np.nan,
                "price_range_max": cell["price_numeric"].max() if len(cell) else np.nan,
                "adequate_sample": n_s >= adequate_n and n_r >= adequate_n,
                "tested": False,
                "t_statistic": np.nan,
                "p_value": np.nan,
            }
            if n_s >= min_test_n and n_r >= min_test_n:
                try:
                    test = welch_t_test(superhost, regular, alpha=alpha)
                except DataQualityError as exc:
                    logger.warning("Segment %s / %s not tested: %s", room_category, tier, exc)
                else:
                    row.update(tested=True, t_statistic=test["t_statistic"], p_value=test["p_value"])
            else:
                logger.info(
                    "Segment %s / %s below test threshold (%d Superhost, %d Regular)",
                    room_category, tier, n_s, n_r,
                )
            rows.append(row)
    table = pd.DataFrame(rows)
    table["significant"] = table["p_value"] < alpha
    table["significance"] = table["p_value"].apply(sig_stars)
    return table


def fit_segment_interaction_model(df: pd.DataFrame):
    """
    OLS with superhost x room category x tier interactions plus review count.
    Returns (fitted result, interaction-term coefficient table).

    Interaction terms with no supporting listings (an empty Superhost cell in
    some tier) are dropped from the fit and reported with estimated=False.
    """
    data = df.copy()
    data["is_superhost"] = data["is_superhost"].astype(int)
    data["price_tier"] = data["price_tier"].astype(str)
    model = smf.ols(INTERACTION_FORMULA, data)
    aliased = check_design_rank(model, allow_aliased_interactions=True)
    if aliased:
        exog = pd.DataFrame(model.exog, columns=model.exog_names).drop(columns=aliased)
        result = sm.OLS(model.endog, exog).fit()
    else:
        result = model.fit()
    terms = [t for t in model.exog_names if ":" in t]
    return result, coefficient_table(result, terms=terms)


def run_segment_pipeline(df: pd.DataFrame, min_test_n: int = 10, adequate_n: int = 30) -> dict:
    data, cuts = assign_price_tertiles(df)
    premiums = segment_premiums(data, min_test_n=min_test_n, adequate_n=adequate_n)
    model, coefficients = fit_segment_interaction_model(data)
    logger.info(
        "Segment analysis: %d of %d segments adequate, %d significant",
        int(premiums["adequate_sample"].sum()), len(premiums), int(premiums["significant"].sum()),
    )
    return {
        "data": data,
        "cut_points": cuts,
        "segment_summary": segment_summary(data),
        "segment_premiums": premiums,
        "model": model,
        "interaction_coefficients": coefficients,
    }
