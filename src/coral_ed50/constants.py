"""
Shared constants for ED50 analysis.
"""

GROUP_COL = "group_id"
STIMULUS_COL = "stimulus_level"
RESPONSE_COL = "response"

# Parameter order used by the log-logistic model and its covariance matrix
PARAM_NAMES = ("hill", "max_response", "ed50")

# Primary short heat-ramp assay (degC, Fv/Fm)
DEFAULT_HILL_BOUNDS = (20.0, 50.0)
DEFAULT_MAX_RESPONSE_BOUNDS = (0.3, 0.7)
DEFAULT_ED50_BOUNDS = (30.0, 40.0)

# Ramp set points; lowest and highest anchor the asymptotes
CBASS_TEMPERATURES = (30.0, 33.0, 36.0, 39.0)

MIN_STIMULUS_LEVELS = 4
DEFAULT_INFLUENCE_SCALE = 4.0
DEFAULT_REMOVAL_FRACTION = 0.15
DEFAULT_MAX_NFEV = 10000

PASS_UNFILTERED = "unfiltered"
PASS_FILTERED = "filtered"

OUTPUT_COLUMNS = [
    "pass_name",
    "ed50",
    "ed50_std_error",
    "ed50_adjusted",
    "n_points_used",
    "n_points_masked",
    "fit_success",
    "failure_reason",
    "hill",
    "max_response",
]
