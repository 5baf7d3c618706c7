"""
coral-ed50 - Thermal tolerance (ED50) analysis for coral heat-ramp assays

Per-genotype log-logistic dose-response fitting with influence-based outlier
removal, batch-effect adjustment, test-retest repeatability and pairwise
rank-order preservation.
"""

from .assessment import (
    ED50Record,
    OutlierDecision,
    RankPreservationModel,
    RepeatabilityResult,
    adjust_batch_effects,
    adjust_records,
    combine_replicates,
    decide_outliers,
    extract_ed50,
    fit_rank_preservation,
    inverse_variance_mean,
    kde_quantiles,
    pair_sessions,
    pairwise_differences,
    records_to_frame,
    refit_without_outliers,
    select_high_confidence,
    summarize_repeatability,
)
from .config import CBASS_CONFIG, CLASSIC_CONFIG, FitConfig, ParameterBounds
from .data import validate_observations
from .exceptions import (
    ED50AnalysisError,
    FitFailedError,
    MissingParameterError,
    ObservationError,
    UnbalancedDesignError,
)
from .fitting import FitFailure, FitSuccess, ModelFit, fit_group, log_logistic
from .pipeline import PipelineResult, process_group, run_ed50_pipeline

__version__ = "0.1.0"

__all__ = [
    "CBASS_CONFIG",
    "CLASSIC_CONFIG",
    "ED50AnalysisError",
    "ED50Record",
    "FitConfig",
    "FitFailedError",
    "FitFailure",
    "FitSuccess",
    "MissingParameterError",
    "ModelFit",
    "ObservationError",
    "OutlierDecision",
    "ParameterBounds",
    "PipelineResult",
    "RankPreservationModel",
    "RepeatabilityResult",
    "UnbalancedDesignError",
    "adjust_batch_effects",
    "adjust_records",
    "combine_replicates",
    "decide_outliers",
    "extract_ed50",
    "fit_group",
    "fit_rank_preservation",
    "inverse_variance_mean",
    "kde_quantiles",
    "log_logistic",
    "pair_sessions",
    "pairwise_differences",
    "process_group",
    "records_to_frame",
    "refit_without_outliers",
    "run_ed50_pipeline",
    "select_high_confidence",
    "summarize_repeatability",
    "validate_observations",
    "__version__",
]
