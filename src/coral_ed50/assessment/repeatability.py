"""
Test-retest repeatability of ED50 estimates.

Pairs two ED50 collections by group, computes absolute differences and reads
reproducibility thresholds (e.g., the 90th-percentile test-retest difference)
from either the plain empirical distribution or a Gaussian kernel density
with an explicitly stated bandwidth.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import brentq

from coral_ed50.constants import GROUP_COL

logger = logging.getLogger(__name__)

DEFAULT_QUANTILES = (0.5, 0.75, 0.9, 0.95)


@dataclass
class RepeatabilityResult:
    """Summary of test-retest agreement for one set of paired groups."""

    n_groups: int
    median_abs_diff: float
    mean_abs_diff: float
    empirical_quantiles: dict[float, float]
    kde_quantiles: dict[float, float] = field(default_factory=dict)
    bandwidth: Optional[float] = None
    subset_label: str = "all"
    pearson_r: float = np.nan
    spearman_rho: float = np.nan

    def to_frame(self) -> pd.DataFrame:
        """One row per quantile with empirical and KDE thresholds."""
        rows = [
            {
                "subset": self.subset_label,
                "n_groups": self.n_groups,
                "quantile": q,
                "empirical_abs_diff": v,
                "kde_abs_diff": self.kde_quantiles.get(q, np.nan),
                "bandwidth": self.bandwidth,
            }
            for q, v in self.empirical_quantiles.items()
        ]
        return pd.DataFrame(rows)


def pair_sessions(
    session1: pd.DataFrame,
    session2: pd.DataFrame,
    *,
    key_cols: Optional[Sequence[str]] = None,
    estimate_col: str = "ed50",
    se_col: Optional[str] = "ed50_std_error",
) -> pd.DataFrame:
    """
    Join two ED50 collections on the group key.

    Args:
        session1: First measurement (test / treatment A).
        session2: Second measurement (retest / treatment B).
        key_cols: Columns identifying a group. Default: [group_id].
        estimate_col: Estimate column in both inputs (e.g., "ed50" or
            "ed50_adjusted").
        se_col: Standard error column, or None when unavailable.

    Returns:
        DataFrame with key_cols, ed50_1, ed50_2, diff (2 - 1), abs_diff and,
        when se_col is given, se_1, se_2, combined_se = sqrt(se_1^2 + se_2^2).
        Groups present in only one session are dropped with a warning.
    """
    key_cols = list(key_cols or [GROUP_COL])
    value_cols = [estimate_col] + ([se_col] if se_col else [])
    for name, df in (("session1", session1), ("session2", session2)):
        missing = [c for c in key_cols + value_cols if c not in df.columns]
        if missing:
            raise ValueError(
                f"{name} is missing columns {missing}. Available: {list(df.columns)}"
            )
        if df.duplicated(subset=key_cols).any():
            raise ValueError(
                f"{name} has more than one row per {key_cols}; combine replicates first"
            )

    rename1 = {estimate_col: "ed50_1"}
    rename2 = {estimate_col: "ed50_2"}
    if se_col:
        rename1[se_col] = "se_1"
        rename2[se_col] = "se_2"
    left = session1[key_cols + value_cols].rename(columns=rename1)
    right = session2[key_cols + value_cols].rename(columns=rename2)
    merged = left.merge(right, on=key_cols, how="outer", indicator=True)

    unmatched = merged["_merge"] != "both"
    if unmatched.any():
        logger.warning(
            "Dropping %d group(s) not measured in both sessions", int(unmatched.sum())
        )
    out = merged.loc[~unmatched].drop(columns=["_merge"]).reset_index(drop=True)

    out["diff"] = out["ed50_2"] - out["ed50_1"]
    out["abs_diff"] = out["diff"].abs()
    if se_col:
        out["combined_se"] = np.sqrt(out["se_1"] ** 2 + out["se_2"] ** 2)
    return out


def select_high_confidence(
    paired: pd.DataFrame,
    top_k: int,
    *,
    se_col: str = "combined_se",
) -> pd.DataFrame:
    """
    Keep the top_k groups with the lowest combined standard error.

    This is an explicit pre-filter; summaries computed on its output should
    carry a subset label (see summarize_repeatability).
    """
    if se_col not in paired.columns:
        raise ValueError(
            f"se_col '{se_col}' not in DataFrame. Available: {list(paired.columns)}"
        )
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    return (
        paired.sort_values(se_col, kind="mergesort")
        .head(top_k)
        .reset_index(drop=True)
    )


def empirical_quantiles(
    values: np.ndarray | pd.Series,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
) -> dict[float, float]:
    """Quantiles of the empirical distribution (NaN values ignored)."""
    vals = np.asarray(values, dtype=float)
    vals = vals[np.isfinite(vals)]
    if len(vals) == 0:
        return {float(q): np.nan for q in quantiles}
    return {float(q): float(np.quantile(vals, q)) for q in quantiles}


def kde_cdf(x: float, values: np.ndarray, bandwidth: float) -> float:
    """CDF at x of a Gaussian KDE with kernel standard deviation bandwidth."""
    return float(np.mean(stats.norm.cdf((x - values) / bandwidth)))


def kde_quantiles(
    values: np.ndarray | pd.Series,
    bandwidth: float,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
) -> dict[float, float]:
    """
    Quantiles of a Gaussian kernel density estimate.

    Args:
        values: Sample (e.g., absolute test-retest differences).
        bandwidth: Kernel standard deviation in the units of values. A
            tunable, so report it with the thresholds.
        quantiles: Probabilities in (0, 1).

    Returns:
        Mapping quantile -> threshold.
    """
    if not bandwidth > 0:
        raise ValueError(f"bandwidth must be positive, got {bandwidth}")
    vals = np.asarray(values, dtype=float)
    vals = vals[np.isfinite(vals)]
    if len(vals) == 0:
        return {float(q): np.nan for q in quantiles}

    lo = vals.min() - 10 * bandwidth
    hi = vals.max() + 10 * bandwidth
    out = {}
    for q in quantiles:
        if not 0 < q < 1:
            raise ValueError(f"KDE quantiles must be in (0, 1), got {q}")
        out[float(q)] = float(
            brentq(lambda x: kde_cdf(x, vals, bandwidth) - q, lo, hi, xtol=1e-10)
        )
    return out


def summarize_repeatability(
    paired: pd.DataFrame,
    *,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    bandwidth: Optional[float] = None,
    subset_label: str = "all",
) -> RepeatabilityResult:
    """
    Summarize test-retest agreement of a paired table (from pair_sessions).

    Args:
        paired: Output of pair_sessions, optionally passed through
            select_high_confidence.
        quantiles: Thresholds to report.
        bandwidth: If given, also report KDE quantiles with this bandwidth.
        subset_label: Label describing which groups were used.

    Returns:
        RepeatabilityResult.
    """
    required = ["ed50_1", "ed50_2", "abs_diff"]
    missing = [c for c in required if c not in paired.columns]
    if missing:
        raise ValueError(
            f"paired is missing columns {missing}. Available: {list(paired.columns)}"
        )

    abs_diff = paired["abs_diff"].astype(float).values
    n = int(np.isfinite(abs_diff).sum())
    if n == 0:
        raise ValueError("No paired groups to summarize")

    pearson_r = spearman_rho = np.nan
    if n >= 3:
        x = paired["ed50_1"].astype(float).values
        y = paired["ed50_2"].astype(float).values
        if np.std(x) > 0 and np.std(y) > 0:
            pearson_r = float(stats.pearsonr(x, y)[0])
            spearman_rho = float(stats.spearmanr(x, y)[0])

    result = RepeatabilityResult(
        n_groups=n,
        median_abs_diff=float(np.nanmedian(abs_diff)),
        mean_abs_diff=float(np.nanmean(abs_diff)),
        empirical_quantiles=empirical_quantiles(abs_diff, quantiles),
        subset_label=subset_label,
        pearson_r=pearson_r,
        spearman_rho=spearman_rho,
    )
    if bandwidth is not None:
        result.kde_quantiles = kde_quantiles(abs_diff, bandwidth, quantiles)
        result.bandwidth = float(bandwidth)
    logger.info(
        "Repeatability (%s, n=%d): median |diff|=%.3f%s",
        subset_label,
        n,
        result.median_abs_diff,
        f", bandwidth={bandwidth}" if bandwidth is not None else "",
    )
    return result
