"""
Batch-effect removal and replicate combination for ED50 collections.

Systematic offsets between batches (nursery, session, measurement year) are
removed with a fixed-effects linear model, estimate ~ C(batch_1) + ...;
the adjusted estimate is the grand mean plus the model residual, which keeps
genotype ranking within a batch. Replicate measurements of the same group in
one batch are combined by inverse-variance weighting first.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from coral_ed50.assessment.ed50 import ED50Record
from coral_ed50.constants import GROUP_COL
from coral_ed50.exceptions import UnbalancedDesignError

logger = logging.getLogger(__name__)


def inverse_variance_mean(
    estimates: Sequence[float] | np.ndarray,
    std_errors: Sequence[float] | np.ndarray,
) -> tuple[float, float]:
    """
    Combine replicate estimates by inverse-variance weighting.

    weighted_mean = sum(x_i / se_i^2) / sum(1 / se_i^2). The combined standard
    error is the plain mean of the replicate standard errors, not the
    weighted-mean standard error.

    Args:
        estimates: Replicate estimates.
        std_errors: Matching standard errors; all must be positive.

    Returns:
        (weighted_mean, combined_std_error).
    """
    x = np.asarray(estimates, dtype=float)
    se = np.asarray(std_errors, dtype=float)
    if x.shape != se.shape or x.size == 0:
        raise ValueError(
            f"Need matching, non-empty estimates and std_errors, got "
            f"{x.shape} and {se.shape}"
        )
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(se))):
        raise ValueError("Estimates and std_errors must be finite")
    if np.any(se <= 0):
        raise ValueError("std_errors must be positive for inverse-variance weighting")

    w = 1.0 / se**2
    return float(np.sum(x * w) / np.sum(w)), float(np.mean(se))


def combine_replicates(
    df: pd.DataFrame,
    key_cols: Sequence[str],
    *,
    estimate_col: str = "ed50",
    se_col: str = "ed50_std_error",
) -> pd.DataFrame:
    """
    Collapse replicate rows sharing key_cols into one inverse-variance mean.

    Args:
        df: ED50 table.
        key_cols: Columns identifying one group within one batch
            (e.g., ["group_id", "nursery", "year"]).
        estimate_col: Estimate column.
        se_col: Standard error column.

    Returns:
        DataFrame with key_cols, estimate_col, se_col and n_replicates.
    """
    key_cols = list(key_cols)
    required = key_cols + [estimate_col, se_col]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(
            f"Columns {missing} not in DataFrame. Available: {list(df.columns)}"
        )

    rows: list[dict] = []
    for key, g in df.groupby(key_cols, sort=True, dropna=False):
        key = key if isinstance(key, tuple) else (key,)
        est, se = inverse_variance_mean(g[estimate_col].values, g[se_col].values)
        row = dict(zip(key_cols, key))
        row.update({estimate_col: est, se_col: se, "n_replicates": len(g)})
        rows.append(row)

    if not rows:
        return pd.DataFrame(columns=required + ["n_replicates"])
    out = pd.DataFrame(rows)
    n_combined = int((out["n_replicates"] > 1).sum())
    if n_combined:
        logger.info("Combined replicates for %d group/batch key(s)", n_combined)
    return out


def validate_batch_design(
    df: pd.DataFrame,
    batch_cols: Sequence[str],
    *,
    group_col: str = GROUP_COL,
    estimate_col: str = "ed50",
    allow_nested: Sequence[str] = (),
) -> None:
    """
    Check the precondition of adjust_batch_effects.

    Each group must have exactly one estimate per batch combination, no
    missing estimates or batch labels, and an estimate at every level of each
    batch column. Columns listed in allow_nested are exempt from the last
    check: a group may sit in a single level of them (a genotype kept in one
    nursery).

    Raises:
        UnbalancedDesignError: On any violation.
    """
    batch_cols = list(batch_cols)
    if not batch_cols:
        raise ValueError("batch_cols must name at least one batch column")
    extra = [c for c in allow_nested if c not in batch_cols]
    if extra:
        raise ValueError(f"allow_nested columns {extra} are not in batch_cols")
    required = [group_col, estimate_col] + batch_cols
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise UnbalancedDesignError(
            f"Columns {missing} not in DataFrame. Available: {list(df.columns)}"
        )

    nulls = {c: int(df[c].isna().sum()) for c in required if df[c].isna().any()}
    if nulls:
        raise UnbalancedDesignError(f"Missing values in batch-model input: {nulls}")

    dup = df.duplicated(subset=[group_col] + batch_cols, keep=False)
    if dup.any():
        examples = df.loc[dup, [group_col] + batch_cols].drop_duplicates().head(5)
        raise UnbalancedDesignError(
            f"{int(dup.sum())} row(s) share a group and batch; combine replicates "
            f"first:\n{examples.to_string(index=False)}"
        )

    for col in (c for c in batch_cols if c not in allow_nested):
        levels = set(df[col].unique())
        seen = df.groupby(group_col)[col].agg(lambda s: set(s.unique()))
        incomplete = {
            g: sorted(map(str, levels - s)) for g, s in seen.items() if levels - s
        }
        if incomplete:
            preview = dict(list(incomplete.items())[:5])
            raise UnbalancedDesignError(
                f"{len(incomplete)} group(s) lack a level of '{col}': {preview}"
            )


def adjust_batch_effects(
    df: pd.DataFrame,
    batch_cols: Sequence[str],
    *,
    group_col: str = GROUP_COL,
    estimate_col: str = "ed50",
    adjusted_col: str = "ed50_adjusted",
    allow_nested: Sequence[str] = (),
) -> pd.DataFrame:
    """
    Remove additive batch offsets from ED50 estimates.

    Fits estimate ~ C(batch_1) + C(batch_2) + ... by OLS and sets
    adjusted = grand_mean(estimate) + residual.

    Args:
        df: ED50 table, one row per group per batch combination.
        batch_cols: Batch factor columns (e.g., ["nursery", "year"]).
        group_col: Group identifier column.
        estimate_col: Estimate column.
        adjusted_col: Name of the output column.
        allow_nested: Batch columns a group need not cover at every level.

    Returns:
        Copy of df with adjusted_col added.

    Raises:
        UnbalancedDesignError: Input fails validate_batch_design.
    """
    validate_batch_design(
        df,
        batch_cols,
        group_col=group_col,
        estimate_col=estimate_col,
        allow_nested=allow_nested,
    )
    batch_cols = list(batch_cols)

    model_df = pd.DataFrame({"_y": df[estimate_col].astype(float).values})
    terms = []
    for i, col in enumerate(batch_cols):
        name = f"_b{i}"
        model_df[name] = df[col].astype(str).values
        terms.append(f"C({name})")
    formula = "_y ~ " + " + ".join(terms)

    fit = smf.ols(formula, data=model_df).fit()
    grand_mean = float(model_df["_y"].mean())
    logger.info(
        "Batch model %s on %d record(s): R^2=%.3f",
        " + ".join(batch_cols),
        len(model_df),
        fit.rsquared if len(model_df) > 1 else float("nan"),
    )

    out = df.copy()
    out[adjusted_col] = grand_mean + np.asarray(fit.resid, dtype=float)
    return out


def adjust_records(
    records: Sequence[ED50Record],
    batch_cols: Sequence[str],
    *,
    allow_nested: Sequence[str] = (),
) -> list[ED50Record]:
    """
    adjust_batch_effects over a collection of ED50Records.

    Returns:
        New records with adjusted_estimate set, in input order.
    """
    batch_cols = list(batch_cols)
    missing: Optional[ED50Record] = next(
        (r for r in records if any(c not in r.batch_ids for c in batch_cols)), None
    )
    if missing is not None:
        raise UnbalancedDesignError(
            f"Record for group '{missing.group_id}' lacks batch labels "
            f"{[c for c in batch_cols if c not in missing.batch_ids]}"
        )
    frame = pd.DataFrame(
        [
            {GROUP_COL: r.group_id, "ed50": r.estimate}
            | {c: r.batch_ids[c] for c in batch_cols}
            for r in records
        ]
    )
    adjusted = adjust_batch_effects(
        frame, batch_cols, allow_nested=allow_nested
    )
    return [
        rec.with_adjustment(value)
        for rec, value in zip(records, adjusted["ed50_adjusted"].values)
    ]
