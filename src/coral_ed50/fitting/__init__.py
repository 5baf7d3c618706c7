"""
Dose-response curve fitting (log-logistic model, per-group fits).
"""

from .curve_fit import FitFailure, FitResult, FitSuccess, ModelFit, fit_group
from .models import log_logistic, log_logistic_jacobian

__all__ = [
    "FitFailure",
    "FitResult",
    "FitSuccess",
    "ModelFit",
    "fit_group",
    "log_logistic",
    "log_logistic_jacobian",
]
