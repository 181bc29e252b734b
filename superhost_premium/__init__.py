# Shared statistical logic for the Berlin Airbnb Superhost premium analysis
from .core_metrics import (
    LISTINGS_SCHEMA,
    ROOM_CATEGORIES,
    DataQualityError,
    InsufficientSampleError,
    PremiumAnalysisError,
    SingularDesignError,
    sig_stars,
    summarize_groups,
    compute_premiums,
    premium_difference,
)
from .ingest_listings import CleaningConfig, clean_listings, load_raw_listings
from .hypothesis_tests import welch_t_test, run_hypothesis_pipeline
from .advanced_metrics import run_quantile_pipeline
from .segment_metrics import run_segment_pipeline
from .predictive_validation import run_predictive_pipeline
from .pipeline import PipelineConfig, run_pipeline

__all__ = [
    "LISTINGS_SCHEMA",
    "ROOM_CATEGORIES",
    "DataQualityError",
    "InsufficientSampleError",
    "PremiumAnalysisError",
    "SingularDesignError",
    "sig_stars",
    "summarize_groups",
    "compute_premiums",
    "premium_difference",
    "CleaningConfig",
    "clean_listings",
    "load_raw_listings",
    "welch_t_test",
    "run_hypothesis_pipeline",
    "run_quantile_pipeline",
    "run_segment_pipeline",
    "run_predictive_pipeline",
    "PipelineConfig",
    "run_pipeline",
]
