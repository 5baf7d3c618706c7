"""
Influence-based outlier masking for dose-response fits.

Flags observations whose Cook's distance exceeds k / n, masks at most
floor(n * removal_fraction) of them (highest influence first), never masks a
protected stimulus level, and refits exactly once. The single refit is the
protocol; the filter is not iterated to convergence.
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from coral_ed50.config import FitConfig, MaskPolicy
from coral_ed50.fitting import FitResult, FitSuccess, ModelFit, fit_group

logger = logging.getLogger(__name__)

REASON_NONE = "none"
REASON_HIGH_INFLUENCE = "high_influence"


@dataclass(frozen=True)
class OutlierDecision:
    """Per-observation masking decision derived from one ModelFit."""

    masked: tuple[bool, ...]
    reasons: tuple[str, ...]
    threshold: float
    cap: int
    n_points: int
    n_flagged: int  # above threshold, before cap and protection

    @property
    def n_masked(self) -> int:
        return sum(self.masked)

    def mask_array(self) -> np.ndarray:
        return np.array(self.masked, dtype=bool)


def removal_cap(n_points: int, removal_fraction: float) -> int:
    """Maximum number of points that may be masked: floor(n * fraction)."""
    return int(math.floor(n_points * removal_fraction))


def protected_mask(
    stimulus: np.ndarray, protected_levels: Sequence[float]
) -> np.ndarray:
    """True where the stimulus matches one of the protected levels."""
    stimulus = np.asarray(stimulus, dtype=float)
    out = np.zeros(len(stimulus), dtype=bool)
    for level in protected_levels:
        out |= np.isclose(stimulus, level)
    return out


def decide_outliers(
    stimulus: np.ndarray,
    influence: np.ndarray,
    *,
    influence_scale: float = 4.0,
    removal_fraction: float = 0.15,
    protected_levels: Sequence[float] = (),
) -> OutlierDecision:
    """
    Choose which observations to mask from their influence scores.

    Args:
        stimulus: Stimulus level per observation.
        influence: Influence score per observation; NaN for observations
            without a response (never masked, not counted in n).
        influence_scale: Threshold numerator; points with influence > k / n
            are candidates.
        removal_fraction: Cap fraction of non-missing points.
        protected_levels: Stimulus levels that are never masked. A protected
            point that ranks within the cap is retained and its slot is not
            passed on to a lower-ranked point, so the cap stays under-filled.

    Returns:
        OutlierDecision.
    """
    influence = np.asarray(influence, dtype=float)
    valid = ~np.isnan(influence)
    n = int(valid.sum())
    masked = np.zeros(len(influence), dtype=bool)
    if n == 0:
        return OutlierDecision(
            masked=tuple(masked.tolist()),
            reasons=(REASON_NONE,) * len(influence),
            threshold=math.inf,
            cap=0,
            n_points=0,
            n_flagged=0,
        )

    threshold = influence_scale / n
    cap = removal_cap(n, removal_fraction)
    flagged = valid & (influence > threshold)
    protected = protected_mask(stimulus, protected_levels)

    idx = np.nonzero(flagged)[0]
    # Stable sort keeps input order among equal scores
    order = idx[np.argsort(-influence[idx], kind="mergesort")]
    selected = order[:cap]
    # Protected points keep their slot, so the cap is under-filled
    kept = selected[protected[selected]]
    masked[selected[~protected[selected]]] = True

    if kept.size:
        logger.debug(
            "%d high-influence point(s) kept at protected stimulus levels",
            kept.size,
        )

    reasons = tuple(REASON_HIGH_INFLUENCE if m else REASON_NONE for m in masked)
    return OutlierDecision(
        masked=tuple(masked.tolist()),
        reasons=reasons,
        threshold=threshold,
        cap=cap,
        n_points=n,
        n_flagged=int(flagged.sum()),
    )


def decide_from_fit(fit: ModelFit, config: FitConfig) -> OutlierDecision:
    """Apply decide_outliers to a ModelFit using the outlier settings in config."""
    return decide_outliers(
        fit.stimulus,
        fit.influence,
        influence_scale=config.influence_scale,
        removal_fraction=config.removal_fraction,
        protected_levels=config.protected_levels,
    )


def apply_mask(
    fit: ModelFit, decision: OutlierDecision, policy: MaskPolicy = "exclude"
) -> np.ndarray:
    """
    Build the response vector for the refit.

    "exclude" sets masked responses to NaN so the refit ignores them;
    "fitted" replaces them with the prior pass's fitted value.
    """
    mask = decision.mask_array()
    if len(mask) != len(fit.response):
        raise ValueError(
            f"Decision covers {len(mask)} observations but fit has "
            f"{len(fit.response)}"
        )
    if policy == "exclude":
        return np.where(mask, np.nan, fit.response)
    if policy == "fitted":
        return np.where(mask, fit.fitted, fit.response)
    raise ValueError(f"Unknown mask policy '{policy}'. Use 'exclude' or 'fitted'.")


def refit_without_outliers(
    result: FitResult, config: FitConfig
) -> tuple[OutlierDecision | None, FitResult]:
    """
    Run one round of outlier masking followed by exactly one refit.

    Args:
        result: First-pass fit result.
        config: Fit and filter configuration.

    Returns:
        (decision, refit_result). When the first pass failed there is nothing
        to filter: decision is None and the failure is returned unchanged.
    """
    if not isinstance(result, FitSuccess):
        return None, result

    fit = result.fit
    decision = decide_from_fit(fit, config)
    if decision.n_masked == 0:
        logger.debug("No points masked; refit reuses the first-pass model")
        return decision, result

    response = apply_mask(fit, decision, config.mask_policy)
    refit = fit_group(fit.stimulus, response, config.bounds, max_nfev=config.max_nfev)
    return decision, refit
