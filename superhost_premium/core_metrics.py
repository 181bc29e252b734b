"""
Shared logic for the Berlin Superhost premium analysis.
Schema constants, the error taxonomy, the group summarizer (host type x room
category) and the regression helpers used by every downstream stage.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from typing import Optional

logger = logging.getLogger(__name__)

# ── Standardized schema for cleaned listings (shared by every stage) ──
LISTINGS_SCHEMA = {
    "critical_cols": ["price_numeric", "is_superhost", "room_category"],
    "keep_cols": [
        "id", "name", "host_id", "host_name",
        "room_type", "neighbourhood_cleansed", "neighbourhood",
        "latitude", "longitude",
        "accommodates", "bedrooms", "beds",
        "number_of_reviews", "review_scores_rating",
        "availability_365", "minimum_nights", "maximum_nights",
        "calculated_host_listings_count",
    ],
}

SUPERHOST = "Superhost"
REGULAR_HOST = "Regular Host"
HOST_TYPES = [REGULAR_HOST, SUPERHOST]

ENTIRE_PLACE = "Entire Place"
PRIVATE_ROOM = "Private Room"
ROOM_TYPE_LABELS = {
    "Entire home/apt": ENTIRE_PLACE,
    "Private room": PRIVATE_ROOM,
    "Shared room": "Shared Room",
    "Hotel room": "Hotel Room",
}
# Canonical categories for the core 2x2 analysis, in reporting order
ROOM_CATEGORIES = [ENTIRE_PLACE, PRIVATE_ROOM]

MIN_SAMPLE_SIZE = 30  # adequate for CLT-based inference


class PremiumAnalysisError(Exception):
    """Base class for analysis failures."""


class DataQualityError(PremiumAnalysisError, ValueError):
    """Fatal data problem: missing critical fields, degenerate samples."""


class SingularDesignError(DataQualityError):
    """Regression design matrix is rank deficient."""


class InsufficientSampleError(PremiumAnalysisError, ValueError):
    """A group or segment is too small for the requested computation."""


def sig_stars(p: float) -> str:
    """Map p-value to significance stars."""
    if p is None or pd.isna(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    if p < 0.10:
        return "."
    return ""


def interpret_effect_size(d: float) -> str:
    """Cohen's conventional buckets on |d|."""
    if d is None or pd.isna(d):
        return "not computed"
    size = abs(d)
    if size < 0.2:
        return "negligible"
    if size < 0.5:
        return "small"
    if size < 0.8:
        return "medium"
    return "large"


def premium_pct(superhost_value: float, regular_value: float) -> float:
    """Relative premium in percent; NaN when the regular baseline is missing or zero."""
    if regular_value is None or pd.isna(regular_value) or regular_value == 0:
        return np.nan
    return (superhost_value - regular_value) / regular_value * 100


def ordered_room_categories(df: pd.DataFrame, col: str = "room_category") -> list[str]:
    """Canonical categories first, then any extra categories present (relaxed cleaning)."""
    extra = [c for c in ROOM_TYPE_LABELS.values() if c not in ROOM_CATEGORIES]
    present = set(df[col].dropna().unique()) if col in df.columns else set()
    ordered = ROOM_CATEGORIES + [c for c in extra if c in present]
    ordered += sorted(c for c in present if c not in ordered)
    return ordered


def group_prices(
    df: pd.DataFrame,
    host_type: str,
    room_category: str,
    price_col: str = "price_numeric",
) -> pd.Series:
    """Prices of one (host type x room category) cell."""
    mask = (df["host_type"] == host_type) & (df["room_category"] == room_category)
    return df.loc[mask, price_col].dropna()


def summarize_groups(
    df: pd.DataFrame,
    min_sample: int = MIN_SAMPLE_SIZE,
    price_col: str = "price_numeric",
) -> pd.DataFrame:
    """
    Descriptive price statistics per host type x room category.

    Every canonical cell is emitted even when empty so that downstream stages
    can see (and report) missing groups. Cells below ``min_sample`` carry
    ``adequate_sample=False`` and ``sample_flag="insufficient sample"``;
    cells with fewer than two observations get NaN dispersion statistics.
    """
    rows = []
    for room_category in ordered_room_categories(df):
        for host_type in HOST_TYPES:
            prices = group_prices(df, host_type, room_category, price_col)
            n = len(prices)
            sd = prices.std(ddof=1) if n >= 2 else np.nan
            q25 = prices.quantile(0.25) if n else np.nan
            q75 = prices.quantile(0.75) if n else np.nan
            adequate = n >= min_sample
            rows.append({
                "host_type": host_type,
                "room_category": room_category,
                "count": n,
                "mean_price": prices.mean() if n else np.nan,
                "median_price": prices.median() if n else np.nan,
                "sd_price": sd,
                "se_price": sd / np.sqrt(n) if n >= 2 else np.nan,
                "min_price": prices.min() if n else np.nan,
                "max_price": prices.max() if n else np.nan,
                "q25": q25,
                "q75": q75,
                "iqr": q75 - q25,
                "adequate_sample": adequate,
                "sample_flag": "adequate" if adequate else "insufficient sample",
            })
            if not adequate:
                logger.warning(
                    "Group %s / %s has %d listings (< %d): flagged insufficient sample",
                    host_type, room_category, n, min_sample,
                )
    return pd.DataFrame(rows)


def sample_size_table(summary: pd.DataFrame) -> pd.DataFrame:
    """Host type x room category listing counts."""
    table = summary.pivot(index="host_type", columns="room_category", values="count")
    table = table.reindex(index=HOST_TYPES).fillna(0).astype(int)
    table.columns.name = None
    return table.reset_index()


def compute_premiums(summary: pd.DataFrame) -> pd.DataFrame:
    """Superhost premium per room category from the group summary."""
    rows = []
    for room_category, cell in summary.groupby("room_category", sort=False):
        regular = cell[cell["host_type"] == REGULAR_HOST].iloc[0]
        superhost = cell[cell["host_type"] == SUPERHOST].iloc[0]
        defined = regular["count"] > 0 and superhost["count"] > 0
        regular_mean = regular["mean_price"]
        superhost_mean = superhost["mean_price"]
        rows.append({
            "room_category": room_category,
            "n_regular": int(regular["count"]),
            "n_superhost": int(superhost["count"]),
            "regular_mean": regular_mean,
            "superhost_mean": superhost_mean,
            "absolute_premium": superhost_mean - regular_mean if defined else np.nan,
            "relative_premium_pct": premium_pct(superhost_mean, regular_mean) if defined else np.nan,
            "premium_ratio": superhost_mean / regular_mean if defined and regular_mean else np.nan,
            "premium_defined": bool(defined),
            "adequate_sample": bool(regular["adequate_sample"] and superhost["adequate_sample"]),
        })
    return pd.DataFrame(rows)


def premium_difference(premiums: pd.DataFrame) -> float:
    """Private-room premium minus entire-place premium, in percentage points."""
    by_category = premiums.set_index("room_category")["relative_premium_pct"]
    if PRIVATE_ROOM not in by_category.index or ENTIRE_PLACE not in by_category.index:
        return np.nan
    return by_category[PRIVATE_ROOM] - by_category[ENTIRE_PLACE]


def check_design_rank(model, allow_aliased_interactions: bool = False) -> list[str]:
    """
    Raise SingularDesignError when a statsmodels model has a rank-deficient exog.

    With allow_aliased_interactions, interaction columns (names containing
    ":") that add no rank, typically because a host x category x tier cell
    has no listings, are returned instead of raising. Columns are scanned in
    design order, so higher-order terms are the ones reported as aliased.
    Any other dependency is still fatal.
    """
    exog = np.asarray(model.exog, dtype=float)
    n_cols = exog.shape[1]
    rank = np.linalg.matrix_rank(exog)
    if rank == n_cols:
        return []

    if allow_aliased_interactions:
        kept, aliased = [], []
        for i, name in enumerate(model.exog_names):
            candidate = kept + [i]
            if np.linalg.matrix_rank(exog[:, candidate]) == len(candidate):
                kept.append(i)
            else:
                aliased.append(name)
        if all(":" in name for name in aliased):
            logger.warning("Interaction terms not estimable (empty or aliased cells): %s", aliased)
            return aliased

    empty = [
        name for name, col in zip(model.exog_names, exog.T)
        if not np.any(col)
    ]
    detail = f"; all-zero columns: {empty}" if empty else ""
    raise SingularDesignError(
        f"Singular design matrix: rank {rank} < {n_cols} columns{detail}"
    )


def coefficient_table(result, terms: Optional[list[str]] = None, alpha: float = 0.05) -> pd.DataFrame:
    """
    Tidy coefficient table from a fitted statsmodels result.

    Requested terms missing from the fit are kept as rows with NaN statistics
    and estimated=False.
    """
    terms = terms if terms is not None else list(result.params.index)
    table = pd.DataFrame({
        "term": terms,
        "estimate": [result.params.get(t, np.nan) for t in terms],
        "std_error": [result.bse.get(t, np.nan) for t in terms],
        "statistic": [result.tvalues.get(t, np.nan) for t in terms],
        "p_value": [result.pvalues.get(t, np.nan) for t in terms],
        "estimated": [t in result.params.index for t in terms],
    })
    table["significant"] = table["p_value"] < alpha
    table["significance"] = table["p_value"].apply(sig_stars)
    return table


def group_neighbourhoods(
    df: pd.DataFrame,
    top_n: int = 15,
    col: str = "neighbourhood_clean",
    price_col: str = "price_numeric",
    other_label: str = "Other",
) -> pd.Series:
    """
    Keep the top_n most frequent neighbourhoods, collapse the rest to "Other".

    Ties in frequency are broken alphabetically. If the Other bucket ends up
    without price variation, more neighbourhoods are folded into it; when no
    grouping gives it variation the design cannot be identified.
    """
    counts = df[col].value_counts().sort_index().sort_values(ascending=False, kind="stable")
    n_keep = min(top_n, len(counts))
    while True:
        top = set(counts.index[:n_keep])
        grouped = df[col].where(df[col].isin(top), other_label).astype(object)
        grouped = grouped.where(grouped.notna(), other_label).astype(str)
        other_prices = df.loc[grouped == other_label, price_col]
        if other_prices.empty or other_prices.nunique() >= 2:
            return grouped
        if n_keep <= 1:
            raise SingularDesignError(
                f"Neighbourhood bucket {other_label!r} has no price variation for any grouping"
            )
        n_keep -= 1
