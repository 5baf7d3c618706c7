"""
Rank-order preservation between two measurement sessions.

For every ordered pair of groups the session-1 and session-2 differences are
computed; pairs with a positive session-1 difference are kept (one direction
per unordered pair) and a logistic regression models the probability that the
session-2 difference is also positive as a function of the session-1 gap.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from scipy.optimize import minimize
from scipy.special import expit
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from coral_ed50.constants import GROUP_COL

logger = logging.getLogger(__name__)

DEFAULT_RIDGE_ALPHA = 0.01


@dataclass(frozen=True)
class RankPreservationModel:
    """
    Fitted logit P(diff_session2 > 0) = intercept + slope * gap.

    method is "mle" for the maximum-likelihood fit or "ridge" when the data
    separate (e.g., every pair preserved) and a penalised fit was used.
    """

    intercept: float
    slope: float
    cov: np.ndarray  # 2x2 covariance of (intercept, slope)
    n_pairs: int
    n_preserved: int
    method: str = "mle"

    def predict(
        self, gap: float | Sequence[float] | np.ndarray, *, alpha: float = 0.05
    ) -> pd.DataFrame:
        """
        Probability of rank preservation at the given session-1 gap(s).

        The interval is a Wald interval on the logit scale, back-transformed.

        Returns:
            DataFrame with columns gap, probability, lower, upper.
        """
        g = np.atleast_1d(np.asarray(gap, dtype=float))
        X = np.column_stack([np.ones_like(g), g])
        eta = X @ np.array([self.intercept, self.slope])
        se = np.sqrt(np.clip(np.einsum("ij,jk,ik->i", X, self.cov, X), 0.0, None))
        z = stats.norm.ppf(1 - alpha / 2)
        return pd.DataFrame(
            {
                "gap": g,
                "probability": expit(eta),
                "lower": expit(eta - z * se),
                "upper": expit(eta + z * se),
            }
        )

    def probability(self, gap: float) -> float:
        return float(expit(self.intercept + self.slope * gap))


def pairwise_differences(
    session1: pd.DataFrame,
    session2: pd.DataFrame,
    *,
    group_col: str = GROUP_COL,
    estimate_col: str = "ed50",
) -> pd.DataFrame:
    """
    Signed session differences for every ordered pair of groups.

    All ordered pairs (self pairs included) are built from the groups present
    in both sessions, then only pairs with diff_session1 > 0 are kept, which
    drops self pairs and the sign-flipped duplicate of each unordered pair.

    Returns:
        DataFrame with group_id_a, group_id_b, diff_session1, diff_session2
        (a minus b in each session).
    """
    for name, df in (("session1", session1), ("session2", session2)):
        missing = [c for c in (group_col, estimate_col) if c not in df.columns]
        if missing:
            raise ValueError(
                f"{name} is missing columns {missing}. Available: {list(df.columns)}"
            )
        if df[group_col].duplicated().any():
            raise ValueError(f"{name} has more than one row per '{group_col}'")

    both = session1[[group_col, estimate_col]].merge(
        session2[[group_col, estimate_col]],
        on=group_col,
        suffixes=("_1", "_2"),
    )
    a = both.rename(
        columns={
            group_col: "group_id_a",
            f"{estimate_col}_1": "s1_a",
            f"{estimate_col}_2": "s2_a",
        }
    )
    b = both.rename(
        columns={
            group_col: "group_id_b",
            f"{estimate_col}_1": "s1_b",
            f"{estimate_col}_2": "s2_b",
        }
    )
    pairs = a.merge(b, how="cross")
    pairs["diff_session1"] = pairs["s1_a"] - pairs["s1_b"]
    pairs["diff_session2"] = pairs["s2_a"] - pairs["s2_b"]
    pairs = pairs.loc[pairs["diff_session1"] > 0]
    return pairs[
        ["group_id_a", "group_id_b", "diff_session1", "diff_session2"]
    ].reset_index(drop=True)


def _fit_ridge(
    y: np.ndarray, X: np.ndarray, alpha: float
) -> tuple[np.ndarray, np.ndarray]:
    """Maximise loglike / n - alpha / 2 * ||beta||^2; covariance from its Hessian."""
    model = sm.Logit(y, X)
    n = len(y)

    def objective(beta):
        return -(model.loglike(beta) / n - alpha * beta @ beta / 2)

    def gradient(beta):
        return -(model.score(beta) / n - alpha * beta)

    res = minimize(
        objective,
        np.zeros(X.shape[1]),
        jac=gradient,
        method="BFGS",
        options={"gtol": 1e-10},
    )
    params = res.x
    info = -model.hessian(params) + n * alpha * np.eye(X.shape[1])
    return params, np.linalg.inv(info)


def fit_rank_preservation(
    pairs: pd.DataFrame,
    *,
    ridge_alpha: float = DEFAULT_RIDGE_ALPHA,
) -> RankPreservationModel:
    """
    Logistic regression of rank preservation on the session-1 gap.

    Args:
        pairs: Output of pairwise_differences (diff_session1 > 0 rows).
        ridge_alpha: Penalty used when the maximum-likelihood fit does not
            exist (single outcome class, separation, non-convergence).

    Returns:
        RankPreservationModel.
    """
    required = ["diff_session1", "diff_session2"]
    missing = [c for c in required if c not in pairs.columns]
    if missing:
        raise ValueError(
            f"pairs is missing columns {missing}. Available: {list(pairs.columns)}"
        )
    if len(pairs) < 2:
        raise ValueError(f"Need at least 2 pairs to fit, got {len(pairs)}")

    gap = pairs["diff_session1"].astype(float).values
    preserved = (pairs["diff_session2"].astype(float).values > 0).astype(float)
    X = sm.add_constant(gap, has_constant="add")
    n_preserved = int(preserved.sum())

    params: Optional[np.ndarray] = None
    cov: Optional[np.ndarray] = None
    method = "mle"
    if 0 < n_preserved < len(preserved):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                fit = sm.Logit(preserved, X).fit(disp=0)
            except (PerfectSeparationError, np.linalg.LinAlgError) as e:
                logger.debug("Logit MLE failed: %s", e)
                fit = None
        bad = any(
            issubclass(w.category, (PerfectSeparationWarning, ConvergenceWarning))
            for w in caught
        )
        if fit is not None and not bad and fit.mle_retvals.get("converged", False):
            params = np.asarray(fit.params, dtype=float)
            cov = np.asarray(fit.cov_params(), dtype=float)
            if not (np.all(np.isfinite(params)) and np.all(np.isfinite(cov))):
                params = cov = None

    if params is None:
        method = "ridge"
        logger.info(
            "Rank-preservation MLE unavailable (%d/%d preserved); using ridge "
            "fit with alpha=%g",
            n_preserved,
            len(preserved),
            ridge_alpha,
        )
        params, cov = _fit_ridge(preserved, X, ridge_alpha)

    if params[1] < 0:
        logger.warning(
            "Rank-preservation slope is negative (%.3g); larger gaps predict "
            "lower preservation",
            params[1],
        )
    return RankPreservationModel(
        intercept=float(params[0]),
        slope=float(params[1]),
        cov=cov,
        n_pairs=len(preserved),
        n_preserved=n_preserved,
        method=method,
    )
