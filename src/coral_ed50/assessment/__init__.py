"""
ED50 assessment: outlier filtering, extraction, batch adjustment,
repeatability and rank-order preservation.
"""

from .batch_variance import (
    adjust_batch_effects,
    adjust_records,
    combine_replicates,
    inverse_variance_mean,
    validate_batch_design,
)
from .ed50 import (
    ED50Record,
    build_record,
    extract_ed50,
    records_to_frame,
)
from .outliers import (
    OutlierDecision,
    apply_mask,
    decide_from_fit,
    decide_outliers,
    protected_mask,
    refit_without_outliers,
    removal_cap,
)
from .pairwise_rank import (
    RankPreservationModel,
    fit_rank_preservation,
    pairwise_differences,
)
from .repeatability import (
    RepeatabilityResult,
    empirical_quantiles,
    kde_quantiles,
    pair_sessions,
    select_high_confidence,
    summarize_repeatability,
)

__all__ = [
    "ED50Record",
    "OutlierDecision",
    "RankPreservationModel",
    "RepeatabilityResult",
    "adjust_batch_effects",
    "adjust_records",
    "apply_mask",
    "build_record",
    "combine_replicates",
    "decide_from_fit",
    "decide_outliers",
    "empirical_quantiles",
    "extract_ed50",
    "fit_rank_preservation",
    "inverse_variance_mean",
    "kde_quantiles",
    "pair_sessions",
    "pairwise_differences",
    "protected_mask",
    "records_to_frame",
    "refit_without_outliers",
    "removal_cap",
    "select_high_confidence",
    "summarize_repeatability",
    "validate_batch_design",
]
