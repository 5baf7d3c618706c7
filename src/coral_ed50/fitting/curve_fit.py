"""
Per-group dose-response fitting with influence diagnostics.

fit_group fits the bounded log-logistic model to one group's observations by
nonlinear least squares and returns either FitSuccess (parameters, standard
errors, per-observation fitted values, residuals and Cook's distances) or
FitFailure with a reason. Failures are values, never exceptions, so one
non-convergent group cannot abort a batch.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from coral_ed50.config import ParameterBounds
from coral_ed50.constants import DEFAULT_MAX_NFEV, MIN_STIMULUS_LEVELS, PARAM_NAMES
from coral_ed50.fitting.models import log_logistic, log_logistic_jacobian

logger = logging.getLogger(__name__)

# Fallback starting slope when hill is unbounded
_UNBOUNDED_HILL_GUESS = 10.0
_SOLVER_TOL = 1e-10


@dataclass(frozen=True)
class ModelFit:
    """Converged log-logistic fit for one group."""

    params: dict[str, float]
    std_errors: dict[str, float]
    stimulus: np.ndarray
    response: np.ndarray  # NaN where missing or masked-out
    fitted: np.ndarray  # for every observation
    residual: np.ndarray  # NaN where response is missing
    influence: np.ndarray  # Cook's distance; NaN where response is missing

    @property
    def n_points(self) -> int:
        """Number of observations with a response (used in the fit)."""
        return int(np.isfinite(self.response).sum())

    def predict(self, x: np.ndarray) -> np.ndarray:
        """Model response at stimulus levels x under the fitted parameters."""
        return log_logistic(
            x,
            self.params["hill"],
            self.params["max_response"],
            self.params["ed50"],
        )


@dataclass(frozen=True)
class FitSuccess:
    """Fit produced finite parameters and covariance; details in fit."""

    fit: ModelFit
    success: bool = True


@dataclass(frozen=True)
class FitFailure:
    """
    Fit did not produce usable parameters.

    reason is one of "insufficient_points", "max_iterations", "no_convergence",
    "singular_jacobian" or "invalid_input".
    """

    reason: str
    message: str = ""
    n_points: int = 0
    success: bool = False


FitResult = Union[FitSuccess, FitFailure]


def _initial_guess(
    x: np.ndarray, y: np.ndarray, bounds: Optional[ParameterBounds]
) -> np.ndarray:
    """Deterministic starting point derived from the data, inside the bounds."""
    levels = np.unique(x)
    level_means = np.array([y[x == lv].mean() for lv in levels])
    top = float(level_means.max())
    half = top / 2.0

    below = np.nonzero(level_means < half)[0]
    if below.size and below[0] > 0:
        i = below[0]
        x0, x1 = levels[i - 1], levels[i]
        y0, y1 = level_means[i - 1], level_means[i]
        ed50 = x0 + (half - y0) * (x1 - x0) / (y1 - y0)
    else:
        ed50 = float(np.median(levels))

    if bounds is None:
        return np.array([_UNBOUNDED_HILL_GUESS, top, max(ed50, 1e-6)])

    guess = np.array([np.mean(bounds.hill), top, ed50])
    lower, upper = bounds.as_arrays()
    margin = (upper - lower) * 1e-3
    return np.clip(guess, lower + margin, upper - margin)


def _cooks_distance(
    jac: np.ndarray, residual: np.ndarray, n_params: int
) -> np.ndarray:
    """
    Cook's distance from the linearised model at the optimum.

    D_i = e_i^2 h_ii / (p s^2 (1 - h_ii)^2), with h_ii the leverage of
    J (J'J)^-1 J'.
    """
    n = len(residual)
    q, _ = np.linalg.qr(jac)
    leverage = np.sum(q**2, axis=1)
    s2 = float(np.sum(residual**2)) / (n - n_params)
    if s2 <= np.finfo(float).eps:
        return np.zeros(n)
    one_minus_h = 1.0 - leverage
    with np.errstate(divide="ignore", invalid="ignore"):
        d = residual**2 * leverage / (n_params * s2 * one_minus_h**2)
    return np.where(one_minus_h > 1e-12, d, np.inf)


def fit_group(
    stimulus: np.ndarray,
    response: np.ndarray,
    bounds: Optional[ParameterBounds],
    *,
    max_nfev: int = DEFAULT_MAX_NFEV,
) -> FitResult:
    """
    Fit the log-logistic model to one group's observations.

    Args:
        stimulus: Stimulus level per observation.
        response: Response per observation; NaN marks a missing value.
        bounds: Parameter bounds, or None for an unbounded fit. Required so
            the bound set is always an explicit choice of the caller.
        max_nfev: Solver evaluation cap. Hitting it is a failure.

    Returns:
        FitSuccess or FitFailure.
    """
    x_all = np.asarray(stimulus, dtype=float)
    y_all = np.asarray(response, dtype=float)
    if x_all.shape != y_all.shape or x_all.ndim != 1:
        return FitFailure(
            "invalid_input",
            f"stimulus and response must be 1D of equal length, "
            f"got {x_all.shape} and {y_all.shape}",
        )

    used = np.isfinite(y_all) & np.isfinite(x_all)
    x = x_all[used]
    y = y_all[used]
    n = len(x)
    n_params = len(PARAM_NAMES)
    n_levels = len(np.unique(x))
    if n_levels < MIN_STIMULUS_LEVELS or n < n_params + 1:
        return FitFailure(
            "insufficient_points",
            f"{n} point(s) over {n_levels} stimulus level(s); need "
            f"{MIN_STIMULUS_LEVELS} levels",
            n_points=n,
        )

    p0 = _initial_guess(x, y, bounds)
    if bounds is None:
        fit_kwargs = {"method": "lm"}
    else:
        fit_kwargs = {"method": "trf", "bounds": bounds.as_arrays(), "x_scale": "jac"}

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", OptimizeWarning)
        try:
            popt, pcov = curve_fit(
                log_logistic,
                x,
                y,
                p0=p0,
                jac=lambda xv, *p: log_logistic_jacobian(xv, *p),
                maxfev=max_nfev,
                ftol=_SOLVER_TOL,
                xtol=_SOLVER_TOL,
                gtol=_SOLVER_TOL,
                **fit_kwargs,
            )
        except RuntimeError as e:
            msg = str(e)
            reason = "max_iterations" if "max" in msg.lower() else "no_convergence"
            logger.debug("Fit failed (%s): %s", reason, msg)
            return FitFailure(reason, msg, n_points=n)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug("Fit failed (invalid_input): %s", e)
            return FitFailure("invalid_input", str(e), n_points=n)

    if not np.all(np.isfinite(popt)):
        return FitFailure("no_convergence", "non-finite parameters", n_points=n)
    if not np.all(np.isfinite(pcov)):
        return FitFailure(
            "singular_jacobian", "parameter covariance could not be estimated",
            n_points=n,
        )

    fitted_all = log_logistic(x_all, *popt)
    residual_used = y - fitted_all[used]
    jac = log_logistic_jacobian(x, *popt)
    if not np.all(np.isfinite(jac)) or np.linalg.matrix_rank(jac) < n_params:
        return FitFailure(
            "singular_jacobian", "Jacobian is rank deficient at the optimum",
            n_points=n,
        )

    residual_all = np.full(len(x_all), np.nan)
    residual_all[used] = residual_used
    influence_all = np.full(len(x_all), np.nan)
    influence_all[used] = _cooks_distance(jac, residual_used, n_params)

    std_err = np.sqrt(np.clip(np.diag(pcov), 0.0, None))
    fit = ModelFit(
        params={name: float(v) for name, v in zip(PARAM_NAMES, popt)},
        std_errors={name: float(v) for name, v in zip(PARAM_NAMES, std_err)},
        stimulus=x_all,
        response=np.where(used, y_all, np.nan),
        fitted=fitted_all,
        residual=residual_all,
        influence=influence_all,
    )
    return FitSuccess(fit)
