"""
Quantile regression of listing prices: how the Superhost premium changes
across the price distribution (budget vs luxury segments), with an OLS mean
regression on the same covariates as the baseline.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from sklearn.preprocessing import StandardScaler
from statsmodels.tools.sm_exceptions import ConvergenceWarning, IterationLimitWarning

from .core_metrics import (
    ROOM_CATEGORIES,
    check_design_rank,
    coefficient_table,
    group_neighbourhoods,
    premium_pct,
)

logger = logging.getLogger(__name__)

QUANTILE_FORMULA = (
    "price_numeric ~ is_superhost * C(room_category) "
    "+ C(neighbourhood_group) + reviews_scaled"
)
DEFAULT_QUANTILES = (0.25, 0.5, 0.75, 0.9)

QUANTILE_INSIGHTS = {
    0.25: "Budget segment (25th percentile)",
    0.5: "Median pricing effects",
    0.75: "Upper-middle segment (75th percentile)",
    0.9: "Luxury segment (90th percentile)",
}


def prepare_quantile_df(df: pd.DataFrame, top_n: int = 15) -> pd.DataFrame:
    """
    Model frame for the quantile engine: canonical room categories only,
    grouped neighbourhoods, standardized review count, 0/1 Superhost flag.
    """
    work = df[df["room_category"].isin(ROOM_CATEGORIES)].copy().reset_index(drop=True)
    work["is_superhost"] = work["is_superhost"].astype(int)
    work["number_of_reviews"] = work["number_of_reviews"].fillna(0)
    work["neighbourhood_group"] = group_neighbourhoods(work, top_n=top_n)
    work["reviews_scaled"] = StandardScaler().fit_transform(work[["number_of_reviews"]])[:, 0]
    return work


def _fit_quantreg(data: pd.DataFrame, formula: str, tau: float, check_rank: bool = True):
    model = smf.quantreg(formula, data)
    if check_rank:
        check_design_rank(model)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", IterationLimitWarning)
        warnings.simplefilter("ignore", ConvergenceWarning)
        # max_iter increased for convergence on heavy-tailed prices
        return model.fit(q=tau, max_iter=2000)


def bootstrap_quantreg_se(
    data: pd.DataFrame,
    formula: str,
    tau: float,
    *,
    seed,
    n_boot: int = 500,
) -> pd.Series:
    """xy-pair bootstrap standard errors for a quantile regression."""
    rng = np.random.default_rng(seed)
    n = len(data)
    draws = []
    for _ in range(n_boot):
        sample = data.iloc[rng.integers(0, n, size=n)]
        fit = _fit_quantreg(sample, formula, tau, check_rank=False)
        draws.append(fit.params)
    draws = pd.DataFrame(draws)
    return draws.std(ddof=1, skipna=True)


def quantile_coefficient_table(result, se: pd.Series, tau: float) -> pd.DataFrame:
    """Coefficients with bootstrap standard errors and t-based p-values."""
    params = result.params
    se = se.reindex(params.index)
    t_values = params / se
    df_resid = result.nobs - len(params)
    p_values = 2 * stats.t.sf(np.abs(t_values), df_resid)
    return pd.DataFrame({
        "quantile": tau,
        "term": params.index,
        "estimate": params.values,
        "std_error": se.values,
        "t_value": t_values.values,
        "p_value": p_values,
    })


def representative_grid(data: pd.DataFrame) -> pd.DataFrame:
    """Superhost x room category grid at the most frequent neighbourhood group and mean reviews."""
    counts = data["neighbourhood_group"].value_counts().sort_index().sort_values(
        ascending=False, kind="stable"
    )
    grid = pd.DataFrame(
        [(sh, rc) for rc in ROOM_CATEGORIES for sh in (0, 1)],
        columns=["is_superhost", "room_category"],
    )
    grid["neighbourhood_group"] = counts.index[0]
    grid["reviews_scaled"] = 0.0
    return grid


def predict_group_premiums(result, data: pd.DataFrame, label) -> pd.DataFrame:
    """Predicted Regular vs Superhost price and premium per room category."""
    grid = representative_grid(data)
    grid["predicted_price"] = np.asarray(result.predict(grid))
    rows = []
    for room_category in ROOM_CATEGORIES:
        cell = grid[grid["room_category"] == room_category].set_index("is_superhost")
        regular, superhost = cell.loc[0, "predicted_price"], cell.loc[1, "predicted_price"]
        rows.append({
            "quantile": label,
            "room_category": room_category,
            "regular_host_price": regular,
            "superhost_price": superhost,
            "premium_absolute": superhost - regular,
            "premium_percentage": premium_pct(superhost, regular),
        })
    return pd.DataFrame(rows)


def check_quantile_monotonicity(premiums: pd.DataFrame, tol: float = 1e-8) -> pd.DataFrame:
    """
    Predicted prices at identical covariates should not decrease with tau.
    Crossing is flagged, not treated as an error: separately fitted quantile
    models can legitimately cross.
    """
    numeric = premiums[pd.to_numeric(premiums["quantile"], errors="coerce").notna()].copy()
    numeric["quantile"] = numeric["quantile"].astype(float)
    rows = []
    for room_category, cell in numeric.groupby("room_category", sort=False):
        cell = cell.sort_values("quantile")
        for host_type, col in (("Regular Host", "regular_host_price"), ("Superhost", "superhost_price")):
            steps = np.diff(cell[col].to_numpy())
            monotonic = bool(np.all(steps >= -tol))
            if not monotonic:
                logger.warning(
                    "Quantile crossing for %s / %s: predictions %s",
                    host_type, room_category, np.round(cell[col].to_numpy(), 2).tolist(),
                )
            rows.append({
                "room_category": room_category,
                "host_type": host_type,
                "quantiles": cell["quantile"].tolist(),
                "predicted_prices": cell[col].tolist(),
                "monotonic": monotonic,
            })
    return pd.DataFrame(rows)


def method_comparison_table(data: pd.DataFrame, quantiles) -> pd.DataFrame:
    price_range = f"€{data['price_numeric'].min():.0f} - €{data['price_numeric'].max():.0f}"
    methods = [f"Quantile Regression (τ={q})" for q in quantiles] + ["Linear Regression (OLS)"]
    insights = [QUANTILE_INSIGHTS.get(q, f"{q * 100:.0f}th percentile") for q in quantiles]
    return pd.DataFrame({
        "Method": methods,
        "Dataset_Size": len(data),
        "Price_Range": price_range,
        "Key_Insight": insights + ["Average effect across all prices"],
    })


def run_quantile_pipeline(
    df: pd.DataFrame,
    *,
    seed: int,
    quantiles=DEFAULT_QUANTILES,
    top_n: int = 15,
    n_boot: int = 500,
) -> dict:
    """
    Fit one quantile regression per tau plus an OLS baseline and derive the
    Superhost premium per room category from each.
    """
    work = prepare_quantile_df(df, top_n=top_n)
    logger.info(
        "Quantile regression on %d listings, %d neighbourhood groups, taus=%s",
        len(work), work["neighbourhood_group"].nunique(), list(quantiles),
    )

    seeds = np.random.SeedSequence(seed).spawn(len(quantiles))
    models, coef_frames, premium_frames = {}, [], []
    for q, child_seed in zip(quantiles, seeds):
        result = _fit_quantreg(work, QUANTILE_FORMULA, q)
        models[f"q_{q}"] = result
        se = bootstrap_quantreg_se(work, QUANTILE_FORMULA, q, seed=child_seed, n_boot=n_boot)
        coef_frames.append(quantile_coefficient_table(result, se, q))
        premium_frames.append(predict_group_premiums(result, work, q))

    ols_model = smf.ols(QUANTILE_FORMULA, work)
    check_design_rank(ols_model)
    ols_result = ols_model.fit()
    ols_premiums = predict_group_premiums(ols_result, work, "OLS_Mean")

    premiums = pd.concat(premium_frames, ignore_index=True)
    for row in premiums.itertuples(index=False):
        logger.info(
            "tau=%s %s: Superhost premium %.1f%%", row.quantile, row.room_category, row.premium_percentage
        )

    return {
        "models": models,
        "ols_model": ols_result,
        "coef_table": pd.concat(coef_frames, ignore_index=True),
        "ols_coef_table": coefficient_table(ols_result),
        "premium_table": premiums,
        "ols_premiums": ols_premiums,
        "comparison": pd.concat([premiums, ols_premiums], ignore_index=True),
        "crossing_check": check_quantile_monotonicity(premiums),
        "method_comparison": method_comparison_table(work, quantiles),
        "work_df": work,
    }
