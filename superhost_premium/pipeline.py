"""
End-to-end run: clean -> summarize -> hypothesis / quantile / segment ->
predictive validation. Each stage receives its own cleaning policy; tables
are written only after the stage that produces them has completed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .advanced_metrics import DEFAULT_QUANTILES, run_quantile_pipeline
from .core_metrics import (
    MIN_SAMPLE_SIZE,
    compute_premiums,
    premium_difference,
    sample_size_table,
    summarize_groups,
)
from .hypothesis_tests import run_hypothesis_pipeline
from .ingest_listings import CleaningConfig, clean_listings
from .predictive_validation import run_predictive_pipeline
from .segment_metrics import run_segment_pipeline

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    seed: int = 42
    n_bootstrap: int = 1000
    quantile_bootstrap: int = 500
    quantiles: tuple[float, ...] = DEFAULT_QUANTILES
    top_n_neighbourhoods: int = 15
    min_sample: int = MIN_SAMPLE_SIZE
    segment_min_test_n: int = 10
    test_size: float = 0.3
    include_boosting: bool = True
    # summary / hypothesis branch
    hypothesis_cleaning: CleaningConfig = field(default_factory=lambda: CleaningConfig.for_mode("strict"))
    # quantile / segment / predictive branch
    modelling_cleaning: CleaningConfig = field(default_factory=lambda: CleaningConfig.for_mode("minimal"))


def configure_logging(level=logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def write_table(table: pd.DataFrame, output_dir: Optional[str], name: str) -> Optional[str]:
    """Write one artifact as CSV; no-op without an output directory."""
    if output_dir is None or table is None:
        return None
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{name}.csv")
    table.to_csv(path, index=False)
    logger.info("Wrote %s (%d rows)", path, len(table))
    return path


def _write_stage(tables: dict, output_dir: Optional[str]) -> None:
    for name, table in tables.items():
        write_table(table, output_dir, name)


def run_pipeline(
    raw: pd.DataFrame,
    config: Optional[PipelineConfig] = None,
    output_dir: Optional[str] = None,
) -> dict:
    """
    Run every analysis stage on a raw listings table.

    Returns a dict of stage results. With ``output_dir`` each stage's tables
    are written as CSV once that stage has finished.
    """
    config = config or PipelineConfig()
    results: dict = {"config": config}

    # Cleaning + group summary
    cleaned, cleaning_report = clean_listings(raw, config.hypothesis_cleaning)
    summary = summarize_groups(cleaned, min_sample=config.min_sample)
    premiums = compute_premiums(summary)
    results.update(
        cleaned=cleaned,
        cleaning_report=cleaning_report,
        summary=summary,
        premiums=premiums,
        premium_difference_pp=premium_difference(premiums),
    )
    _write_stage({
        "cleaned_listings": cleaned,
        "group_summary": summary,
        "sample_sizes": sample_size_table(summary),
        "premiums": premiums,
    }, output_dir)

    # Hypothesis tests
    hypothesis = run_hypothesis_pipeline(
        cleaned,
        seed=config.seed,
        summary=summary,
        n_bootstrap=config.n_bootstrap,
        min_sample=config.min_sample,
    )
    results["hypothesis"] = hypothesis
    _write_stage({
        "hypothesis_results": hypothesis["results_table"],
        "effect_sizes": hypothesis["effect_sizes"],
        "bootstrap_summary": hypothesis["bootstrap_table"],
        "normality_tests": hypothesis["diagnostics"]["normality"],
        "levene_tests": hypothesis["diagnostics"]["levene"],
    }, output_dir)

    # Modelling branch works on its own, more permissive cleaning
    modelling, modelling_report = clean_listings(raw, config.modelling_cleaning)
    results.update(modelling_data=modelling, modelling_report=modelling_report)

    quantile = run_quantile_pipeline(
        modelling,
        seed=config.seed,
        quantiles=config.quantiles,
        top_n=config.top_n_neighbourhoods,
        n_boot=config.quantile_bootstrap,
    )
    results["quantile"] = quantile
    _write_stage({
        "quantile_coefficients": quantile["coef_table"],
        "quantile_premiums": quantile["comparison"],
        "quantile_crossing_check": quantile["crossing_check"],
        "quantile_method_comparison": quantile["method_comparison"],
    }, output_dir)

    segments = run_segment_pipeline(modelling, min_test_n=config.segment_min_test_n,
                                    adequate_n=config.min_sample)
    results["segments"] = segments
    _write_stage({
        "price_segmentation_summary": segments["segment_summary"],
        "interaction_effects_analysis": segments["segment_premiums"],
        "interaction_model_coefficients": segments["interaction_coefficients"],
    }, output_dir)

    reference = premiums.set_index("room_category")["relative_premium_pct"].to_dict()
    predictive = run_predictive_pipeline(
        modelling,
        seed=config.seed,
        reference_premiums=reference,
        test_size=config.test_size,
        top_n=config.top_n_neighbourhoods,
        include_boosting=config.include_boosting,
    )
    results["predictive"] = predictive
    _write_stage({
        "model_performance_comparison": predictive["performance"],
        "overfitting_check": predictive["overfitting"],
        "split_validation": predictive["split_validation"],
        "feature_importance": predictive["feature_importance"],
        "superhost_effect_validation": predictive["superhost_validation"],
    }, output_dir)

    logger.info(
        "Pipeline complete: premium difference %.1f pp, headline test %s",
        results["premium_difference_pp"], hypothesis["verdict"],
    )
    return results
