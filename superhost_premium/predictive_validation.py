"""
Out-of-sample validation: does Superhost status (with room category and a
few listing features) predict nightly price on a held-out test fold?

Linear candidates are fit with statsmodels formulas on the training fold
only; an XGBoost regressor is included as a non-linear reference.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
import xgboost as xgb
from sklearn.metrics import mean_absolute_error, mean_squared_error
from sklearn.model_selection import train_test_split

from .core_metrics import (
    ENTIRE_PLACE,
    ROOM_CATEGORIES,
    InsufficientSampleError,
    check_design_rank,
    group_neighbourhoods,
    premium_pct,
)

logger = logging.getLogger(__name__)

REVIEW_BUCKETS = ["No_Reviews", "Few_Reviews", "Moderate_Reviews", "Many_Reviews"]

MODEL_FORMULAS = {
    "Base_Model": "price_numeric ~ C(superhost) + C(room_category)",
    "Extended_Model": (
        "price_numeric ~ C(superhost) * C(room_category) + C(neighbourhood_group)"
        " + C(reviews_category) + number_of_reviews"
    ),
    "Advanced_Model": (
        "price_numeric ~ C(superhost) * C(room_category) * C(reviews_category)"
        " + C(neighbourhood_group) + log_reviews"
    ),
    "Log_Transformed": (
        "log_price ~ C(superhost) * C(room_category) + C(neighbourhood_group)"
        " + C(reviews_category) + log_reviews"
    ),
}
BOOSTING_FEATURES = ["superhost", "room_category", "neighbourhood_group", "number_of_reviews"]
CATEGORICAL_FEATURES = ["superhost", "room_category", "neighbourhood_group", "reviews_category"]


def bucket_reviews(reviews: pd.Series) -> pd.Series:
    """0 / 1-10 / 11-50 / 50+ review buckets."""
    return pd.Series(
        np.select(
            [reviews == 0, reviews <= 10, reviews <= 50],
            REVIEW_BUCKETS[:3],
            default=REVIEW_BUCKETS[3],
        ),
        index=reviews.index,
    )


def prepare_modeling_df(df: pd.DataFrame, top_n: int = 15) -> pd.DataFrame:
    work = df[df["room_category"].isin(ROOM_CATEGORIES)]
    work = work[work["neighbourhood_clean"].notna()].copy().reset_index(drop=True)
    work["superhost"] = np.where(work["is_superhost"].astype(bool), "Yes", "No")
    work["number_of_reviews"] = work["number_of_reviews"].fillna(0)
    work["reviews_category"] = bucket_reviews(work["number_of_reviews"])
    work["neighbourhood_group"] = group_neighbourhoods(work, top_n=top_n)
    work["log_price"] = np.log(work["price_numeric"] + 1)
    work["log_reviews"] = np.log(work["number_of_reviews"] + 1)
    work["stratum"] = work["superhost"] + "_" + work["room_category"]
    logger.info("Modeling dataset prepared: %d listings", len(work))
    return work


def stratified_split(
    df: pd.DataFrame,
    *,
    seed: int,
    test_size: float = 0.3,
    strata_col: str = "stratum",
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Train/test split preserving the Superhost x room category mix.

    Raises InsufficientSampleError when a stratum is too small to place at
    least one listing in each fold.
    """
    counts = df[strata_col].value_counts()
    small = counts[(counts * test_size < 1) | (counts * (1 - test_size) < 1) | (counts < 2)]
    if not small.empty:
        raise InsufficientSampleError(
            "Strata too small for a train/test split: "
            + ", ".join(f"{k} (n={v})" for k, v in small.items())
        )
    train, test = train_test_split(
        df, test_size=test_size, stratify=df[strata_col], random_state=seed
    )
    for name, fold in (("train", train), ("test", test)):
        absent = set(counts.index) - set(fold[strata_col].unique())
        if absent:
            raise InsufficientSampleError(f"Strata missing from {name} fold: {sorted(absent)}")
    train, test = train.sort_index(), test.sort_index()
    logger.info("Split %d listings into %d train / %d test", len(df), len(train), len(test))
    return train, test


def stratum_proportions(
    full: pd.DataFrame, train: pd.DataFrame, test: pd.DataFrame, strata_col: str = "stratum"
) -> pd.DataFrame:
    table = pd.DataFrame({
        "full_prop": full[strata_col].value_counts(normalize=True),
        "train_prop": train[strata_col].value_counts(normalize=True),
        "test_prop": test[strata_col].value_counts(normalize=True),
    }).fillna(0.0)
    table["max_deviation_pp"] = 100 * np.maximum(
        (table["train_prop"] - table["full_prop"]).abs(),
        (table["test_prop"] - table["full_prop"]).abs(),
    )
    return table.rename_axis("stratum").reset_index()


def split_validation_table(full: pd.DataFrame, train: pd.DataFrame, test: pd.DataFrame) -> pd.DataFrame:
    """Fold sizes and group shares, as a Metric / Value table."""
    rows = [
        ("Total_Observations", len(full)),
        ("Train_Size", len(train)),
        ("Test_Size", len(test)),
        ("Train_Proportion", round(len(train) / len(full), 3)),
        ("Superhost_Train_Prop", round((train["superhost"] == "Yes").mean(), 3)),
        ("Superhost_Test_Prop", round((test["superhost"] == "Yes").mean(), 3)),
        ("Apartment_Train_Prop", round((train["room_category"] == ENTIRE_PLACE).mean(), 3)),
        ("Apartment_Test_Prop", round((test["room_category"] == ENTIRE_PLACE).mean(), 3)),
    ]
    return pd.DataFrame(rows, columns=["Metric", "Value"])


def align_levels(train: pd.DataFrame, other: pd.DataFrame, cols=CATEGORICAL_FEATURES) -> pd.DataFrame:
    """Map factor levels unseen in training to the training fold's most frequent level."""
    other = other.copy()
    for col in cols:
        known = set(train[col].unique())
        unseen = ~other[col].isin(known)
        if unseen.any():
            fallback = train[col].value_counts().index[0]
            logger.warning(
                "%d rows with %s levels unseen in training mapped to %r",
                int(unseen.sum()), col, fallback,
            )
            other.loc[unseen, col] = fallback
    return other


def fit_linear_models(train: pd.DataFrame):
    """
    Fit every candidate formula on the training fold.

    Returns (fitted results, not-estimated interaction terms per model).
    Interaction cells without training listings are left in the design; the
    pseudo-inverse fit zeroes them, which leaves fitted values unchanged.
    """
    results, not_estimated = {}, {}
    for name, formula in MODEL_FORMULAS.items():
        model = smf.ols(formula, train)
        not_estimated[name] = check_design_rank(model, allow_aliased_interactions=True)
        results[name] = model.fit(method="pinv")
        logger.info("%s: train R² = %.3f", name, results[name].rsquared)
    return results, not_estimated


def boosting_matrix(data: pd.DataFrame, columns: Optional[pd.Index] = None) -> pd.DataFrame:
    X = pd.get_dummies(data[BOOSTING_FEATURES], dtype=float)
    if columns is not None:
        X = X.reindex(columns=columns, fill_value=0.0)
    return X


def fit_boosting_model(train: pd.DataFrame, *, seed: int):
    X = boosting_matrix(train)
    model = xgb.XGBRegressor(
        n_estimators=150,
        learning_rate=0.05,
        max_depth=4,
        subsample=0.8,
        colsample_bytree=0.8,
        random_state=seed,
        n_jobs=1,
    )
    model.fit(X, train["price_numeric"])
    return model, X.columns


def predict_prices(name: str, model, data: pd.DataFrame, columns=None) -> np.ndarray:
    """Predictions in price units; log-price predictions are back-transformed."""
    if name == "Gradient_Boosting":
        return model.predict(boosting_matrix(data, columns))
    predicted = np.asarray(model.predict(data), dtype=float)
    if name == "Log_Transformed":
        return np.expm1(predicted)
    return predicted


def regression_metrics(actual, predicted) -> dict:
    """RMSE, MAE, R² (squared correlation) and MAPE over finite pairs."""
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    valid = np.isfinite(actual) & np.isfinite(predicted)
    actual, predicted = actual[valid], predicted[valid]
    if actual.size < 2:
        return {"rmse": np.nan, "mae": np.nan, "r_squared": np.nan, "mape": np.nan}
    if np.std(actual) == 0 or np.std(predicted) == 0:
        r_squared = np.nan
    else:
        r_squared = np.corrcoef(actual, predicted)[0, 1] ** 2
    nonzero = actual != 0
    return {
        "rmse": float(np.sqrt(mean_squared_error(actual, predicted))),
        "mae": float(mean_absolute_error(actual, predicted)),
        "r_squared": float(r_squared),
        "mape": float(np.mean(np.abs((actual[nonzero] - predicted[nonzero]) / actual[nonzero])) * 100),
    }


def evaluate_models(models: dict, train: pd.DataFrame, test: pd.DataFrame, boosting_columns=None) -> pd.DataFrame:
    """Model x fold performance table."""
    rows = []
    for dataset, fold in (("Training", train), ("Test", test)):
        for name, model in models.items():
            predicted = predict_prices(name, model, fold, boosting_columns)
            rows.append({"Model": name, "Dataset": dataset,
                         **regression_metrics(fold["price_numeric"], predicted)})
    return pd.DataFrame(rows)


def overfitting_check(performance: pd.DataFrame, r2_gap: float = 0.05, rmse_gap: float = 20.0) -> pd.DataFrame:
    wide = performance.pivot(index="Model", columns="Dataset", values=["r_squared", "rmse"])
    table = pd.DataFrame({
        "r_squared_Training": wide[("r_squared", "Training")],
        "r_squared_Test": wide[("r_squared", "Test")],
        "rmse_Training": wide[("rmse", "Training")],
        "rmse_Test": wide[("rmse", "Test")],
    })
    table["r_squared_difference"] = table["r_squared_Training"] - table["r_squared_Test"]
    table["rmse_difference"] = table["rmse_Test"] - table["rmse_Training"]
    table["overfitting_concern"] = (
        (table["r_squared_difference"] > r2_gap) | (table["rmse_difference"] > rmse_gap)
    )
    order = list(performance["Model"].unique())
    return table.reindex(order).reset_index()


def feature_importance(result, not_estimated=()) -> pd.DataFrame:
    """Model terms ranked by absolute t statistic; not-estimated terms are left out."""
    table = pd.DataFrame({
        "term": result.params.index,
        "estimate": result.params.values,
        "std_error": result.bse.values,
        "statistic": result.tvalues.values,
        "p_value": result.pvalues.values,
    })
    table = table[(table["term"] != "Intercept") & ~table["term"].isin(not_estimated)].copy()
    table["abs_t_statistic"] = table["statistic"].abs()
    table["importance_rank"] = table["abs_t_statistic"].rank(ascending=False)
    return table.sort_values("importance_rank").reset_index(drop=True)


def superhost_effect_validation(
    train: pd.DataFrame,
    reference_premiums: Optional[Mapping[str, float]] = None,
) -> pd.DataFrame:
    """
    Premium recomputed from training-fold group means (and medians), compared
    with the full-sample premium from the hypothesis stage.
    """
    reference_premiums = reference_premiums or {}
    rows = []
    for room_category in ROOM_CATEGORIES:
        cell = train[train["room_category"] == room_category]
        yes = cell.loc[cell["superhost"] == "Yes", "price_numeric"]
        no = cell.loc[cell["superhost"] == "No", "price_numeric"]
        predicted = premium_pct(yes.mean(), no.mean()) if len(yes) and len(no) else np.nan
        reference = reference_premiums.get(room_category, np.nan)
        rows.append({
            "room_category": room_category,
            "n_superhost": len(yes),
            "n_regular": len(no),
            "mean_price_superhost": yes.mean() if len(yes) else np.nan,
            "mean_price_regular": no.mean() if len(no) else np.nan,
            "median_price_superhost": yes.median() if len(yes) else np.nan,
            "median_price_regular": no.median() if len(no) else np.nan,
            "predicted_premium": predicted,
            "median_premium": (
                premium_pct(yes.median(), no.median()) if len(yes) and len(no) else np.nan
            ),
            "full_sample_premium": reference,
            "validation_difference": abs(reference - predicted),
        })
    return pd.DataFrame(rows)


def run_predictive_pipeline(
    df: pd.DataFrame,
    *,
    seed: int,
    reference_premiums: Optional[Mapping[str, float]] = None,
    test_size: float = 0.3,
    top_n: int = 15,
    include_boosting: bool = True,
) -> dict:
    work = prepare_modeling_df(df, top_n=top_n)
    train, test = stratified_split(work, seed=seed, test_size=test_size)
    test_aligned = align_levels(train, test)

    models, not_estimated = fit_linear_models(train)
    boosting_columns = None
    if include_boosting:
        models["Gradient_Boosting"], boosting_columns = fit_boosting_model(train, seed=seed)

    performance = evaluate_models(models, train, test_aligned, boosting_columns)
    overfitting = overfitting_check(performance)
    for row in overfitting.itertuples(index=False):
        if row.overfitting_concern:
            logger.warning(
                "%s may overfit: R² gap %.3f, RMSE gap %.2f",
                row.Model, row.r_squared_difference, row.rmse_difference,
            )

    return {
        "modeling_df": work,
        "train": train,
        "test": test,
        "split_validation": split_validation_table(work, train, test),
        "stratum_proportions": stratum_proportions(work, train, test),
        "models": models,
        "performance": performance,
        "overfitting": overfitting,
        "feature_importance": feature_importance(
            models["Extended_Model"], not_estimated["Extended_Model"]
        ),
        "not_estimated": not_estimated,
        "superhost_validation": superhost_effect_validation(train, reference_premiums),
    }
