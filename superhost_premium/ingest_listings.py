"""
Listing ingestion: parse a raw InsideAirbnb listings export into the cleaned
table used by every analysis stage (LISTINGS_SCHEMA). One configurable
cleaning routine; the strict / relaxed / minimal policies differ only in
their CleaningConfig.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Literal, Optional

import numpy as np
import pandas as pd
from sklearn.impute import SimpleImputer

from .core_metrics import (
    LISTINGS_SCHEMA,
    ROOM_TYPE_LABELS,
    SUPERHOST,
    REGULAR_HOST,
    DataQualityError,
)

logger = logging.getLogger(__name__)

CleaningMode = Literal["strict", "relaxed", "minimal"]

CANONICAL_ROOM_TYPES = ("Entire home/apt", "Private room")
ALL_ROOM_TYPES = ("Entire home/apt", "Private room", "Shared room", "Hotel room")

STRICT_PRICE_BINS = [
    (50, "Budget (≤€50)"),
    (100, "Mid-range (€51-100)"),
    (200, "Premium (€101-200)"),
    (np.inf, "Luxury (>€200)"),
]
RELAXED_PRICE_BINS = [
    (30, "Budget (≤€30)"),
    (60, "Economy (€31-60)"),
    (100, "Mid-range (€61-100)"),
    (150, "Premium (€101-150)"),
    (250, "Luxury (€151-250)"),
    (np.inf, "Ultra-luxury (>€250)"),
]

# Relaxed-mode defaults for listings without a usable capacity
ACCOMMODATES_DEFAULTS = {
    "Entire home/apt": 4,
    "Private room": 2,
    "Shared room": 1,
    "Hotel room": 2,
}

_TRUE_FLAGS = {"t", "true", "1", "yes", "y"}
_FALSE_FLAGS = {"f", "false", "0", "no", "n"}


@dataclass
class CleaningConfig:
    """Cleaning policy for one analysis stage."""
    mode: CleaningMode = "strict"
    room_types: tuple[str, ...] = CANONICAL_ROOM_TYPES
    min_valid_price: float = 0.0  # prices <= this count as parse failures
    outlier_rule: Literal["sigma", "q99_multiple", "ceiling"] = "sigma"
    sd_multiplier: float = 3.0
    min_price: float = 10.0
    max_price: Optional[float] = None
    q99_multiplier: float = 2.0
    price_bins: list = field(default_factory=lambda: list(STRICT_PRICE_BINS))
    impute_missing: bool = False

    @classmethod
    def for_mode(cls, mode: CleaningMode) -> "CleaningConfig":
        if mode == "strict":
            return cls(mode="strict")
        if mode == "relaxed":
            return cls(
                mode="relaxed",
                room_types=ALL_ROOM_TYPES,
                min_valid_price=1.0,
                outlier_rule="q99_multiple",
                min_price=2.0,
                price_bins=list(RELAXED_PRICE_BINS),
                impute_missing=True,
            )
        if mode == "minimal":
            return cls(
                mode="minimal",
                outlier_rule="ceiling",
                min_price=0.0,
                max_price=10000.0,
            )
        raise ValueError(f"Unknown cleaning mode: {mode!r}")


def parse_price(prices: pd.Series) -> pd.Series:
    """'$1,234.00' -> 1234.0; unparsable values become NaN."""
    if pd.api.types.is_numeric_dtype(prices):
        return prices.astype(float)
    stripped = prices.astype(str).str.replace(r"[$€£,\s]", "", regex=True)
    return pd.to_numeric(stripped, errors="coerce").astype(float)


def parse_superhost_flag(flags: pd.Series) -> pd.Series:
    """Map t/f, true/false, 1/0 and booleans to a nullable boolean series."""
    if pd.api.types.is_bool_dtype(flags):
        return flags.astype("boolean")
    text = flags.astype("string").str.strip().str.lower()
    parsed = pd.Series(pd.NA, index=flags.index, dtype="boolean")
    parsed[text.isin(_TRUE_FLAGS).fillna(False)] = True
    parsed[text.isin(_FALSE_FLAGS).fillna(False)] = False
    return parsed


def load_raw_listings(filepath: str) -> pd.DataFrame:
    """Read a raw listings export (CSV, optionally gzipped)."""
    if not os.path.isfile(filepath):
        raise FileNotFoundError(f"Listings file not found: {filepath}")
    return pd.read_csv(filepath, low_memory=False)


def _price_bounds(prices: pd.Series, config: CleaningConfig) -> tuple[float, float]:
    if config.outlier_rule == "sigma":
        mean, sd = prices.mean(), prices.std(ddof=1)
        lower = max(mean - config.sd_multiplier * sd, config.min_price)
        upper = mean + config.sd_multiplier * sd
    elif config.outlier_rule == "q99_multiple":
        lower = config.min_price
        upper = prices.quantile(0.99) * config.q99_multiplier
    else:
        lower = config.min_price
        upper = config.max_price if config.max_price is not None else np.inf
    return lower, upper


def categorize_price(prices: pd.Series, price_bins: list) -> pd.Series:
    """Bucket prices with right-inclusive upper edges."""
    edges = [-np.inf] + [edge for edge, _ in price_bins]
    labels = [label for _, label in price_bins]
    return pd.cut(prices, bins=edges, labels=labels, right=True).astype(str)


def _derive_fields(work: pd.DataFrame, config: CleaningConfig) -> pd.DataFrame:
    work["is_superhost"] = parse_superhost_flag(work["host_is_superhost"])
    work["host_type"] = np.where(
        work["is_superhost"].fillna(False).astype(bool), SUPERHOST, REGULAR_HOST
    )
    work["host_type"] = work["host_type"].where(work["is_superhost"].notna(), None)
    work["room_category"] = work["room_type"].map(ROOM_TYPE_LABELS).fillna(work["room_type"])
    work["price_category"] = categorize_price(work["price_numeric"], config.price_bins)

    neighbourhood = work.get("neighbourhood_cleansed", pd.Series(np.nan, index=work.index))
    if config.impute_missing:
        if "neighbourhood" in work.columns:
            neighbourhood = neighbourhood.fillna(work["neighbourhood"])
        neighbourhood = neighbourhood.fillna("Unknown")
    work["neighbourhood_clean"] = neighbourhood.astype("string").str.title()

    reviews = work.get("number_of_reviews", pd.Series(np.nan, index=work.index))
    reviews = pd.to_numeric(reviews, errors="coerce").to_frame()
    work["number_of_reviews"] = SimpleImputer(
        strategy="constant", fill_value=0, keep_empty_features=True
    ).fit_transform(reviews)[:, 0]

    if config.impute_missing:
        if "accommodates" in work.columns:
            accommodates = pd.to_numeric(work["accommodates"], errors="coerce")
            defaults = work["room_type"].map(ACCOMMODATES_DEFAULTS).fillna(2)
            work["accommodates"] = accommodates.where(accommodates > 0, defaults)
        if "availability_365" in work.columns:
            work["availability_365"] = pd.to_numeric(work["availability_365"], errors="coerce").fillna(180)
    return work


def validate_cleaned_listings(df: pd.DataFrame) -> None:
    """Every critical field must be fully populated after cleaning."""
    critical = LISTINGS_SCHEMA["critical_cols"]
    missing_cols = [c for c in critical if c not in df.columns]
    if missing_cols:
        raise DataQualityError(f"Cleaned listings lack critical columns: {missing_cols}")
    missing = df[critical].isna().sum()
    missing = missing[missing > 0]
    if not missing.empty:
        raise DataQualityError(
            "Missing values in critical fields after cleaning: "
            + ", ".join(f"{col}={n}" for col, n in missing.items())
        )


def clean_listings(
    raw: pd.DataFrame,
    config: Optional[CleaningConfig] = None,
) -> tuple[pd.DataFrame, dict]:
    """
    Filter, parse, bound and derive analysis fields. Returns (cleaned, report).
    The raw frame is never modified.
    """
    config = config or CleaningConfig.for_mode("strict")
    required = ["price", "host_is_superhost", "room_type"]
    absent = [c for c in required if c not in raw.columns]
    if absent:
        raise DataQualityError(f"Raw listings lack required columns: {absent}")

    report: dict = {"mode": config.mode, "n_raw": len(raw)}
    logger.info("Cleaning %d raw listings (mode=%s)", len(raw), config.mode)

    # Step 1: critical variables present
    raw_price = raw["price"]
    price_blank = raw_price.isna() | (raw_price.astype("string").str.strip() == "").fillna(True)
    keep = raw["host_is_superhost"].notna() & raw["room_type"].notna() & ~price_blank
    work = raw.loc[keep].copy()
    report["n_after_critical"] = len(work)
    logger.info("After filtering missing critical variables: %d listings", len(work))

    # Step 2: price parsing
    work["price_numeric"] = parse_price(work["price"])
    price_issues = ~np.isfinite(work["price_numeric"]) | (work["price_numeric"] <= config.min_valid_price)
    report["n_price_failures"] = int(price_issues.sum())
    work = work.loc[~price_issues].copy()
    report["n_after_price"] = len(work)
    logger.info(
        "Price parsing: %d failures dropped, %d listings remaining",
        report["n_price_failures"], len(work),
    )

    # Step 3: room types
    report["room_type_counts"] = work["room_type"].value_counts().to_dict()
    work = work[work["room_type"].isin(config.room_types)].copy()
    report["n_after_room_filter"] = len(work)
    logger.info("After room type filter %s: %d listings", list(config.room_types), len(work))

    # Step 4: outliers
    if work.empty:
        raise DataQualityError("No listings left before outlier removal")
    lower, upper = _price_bounds(work["price_numeric"], config)
    in_bounds = work["price_numeric"].between(lower, upper)
    report["lower_bound"] = float(lower)
    report["upper_bound"] = float(upper)
    report["n_outliers_removed"] = int((~in_bounds).sum())
    work = work.loc[in_bounds].copy()
    logger.info(
        "Outlier bounds [%.2f, %.2f]: %d removed, %d remaining",
        lower, upper, report["n_outliers_removed"], len(work),
    )

    # Step 5: derived fields
    work = _derive_fields(work, config)

    keep_cols = [c for c in LISTINGS_SCHEMA["keep_cols"] if c in work.columns]
    derived = ["is_superhost", "host_type", "price_numeric", "price_category",
               "room_category", "neighbourhood_clean"]
    cleaned = work[keep_cols + [c for c in derived if c not in keep_cols]].reset_index(drop=True)

    validate_cleaned_listings(cleaned)
    cleaned["is_superhost"] = cleaned["is_superhost"].astype(bool)

    report["n_final"] = len(cleaned)
    report["n_superhost"] = int(cleaned["is_superhost"].sum())
    logger.info(
        "Cleaning complete: %d listings (%d Superhost)", len(cleaned), report["n_superhost"]
    )
    return cleaned, report


def build_cleaned_listings(
    filepath: str,
    config: Optional[CleaningConfig] = None,
    out_path: str | None = None,
) -> tuple[pd.DataFrame, dict]:
    """Load a raw export, clean it, and optionally write the cleaned table."""
    cleaned, report = clean_listings(load_raw_listings(filepath), config)
    if out_path:
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        cleaned.to_csv(out_path, index=False)
    return cleaned, report
