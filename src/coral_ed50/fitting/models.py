"""
Three-parameter log-logistic dose-response model.

response = max_response / (1 + (stimulus / ed50) ** hill)

Monotonically decreasing in stimulus for hill > 0; ed50 is the stimulus at
which the response falls to half of max_response.
"""

import numpy as np


def log_logistic(
    x: np.ndarray, hill: float, max_response: float, ed50: float
) -> np.ndarray:
    """Evaluate the log-logistic curve at stimulus levels x."""
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        u = np.power(x / ed50, hill)
    return max_response / (1.0 + u)


def log_logistic_jacobian(
    x: np.ndarray, hill: float, max_response: float, ed50: float
) -> np.ndarray:
    """
    Analytic Jacobian of log_logistic with respect to (hill, max_response, ed50).

    Returns:
        Array of shape (len(x), 3).
    """
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        ratio = x / ed50
        u = np.power(ratio, hill)
        denom = (1.0 + u) ** 2
        # u -> 0 at x == 0; the log term must not turn that into NaN
        u_log = np.where(u > 0, u * np.log(np.where(ratio > 0, ratio, 1.0)), 0.0)
        d_hill = -max_response * u_log / denom
        d_max = 1.0 / (1.0 + u)
        d_ed50 = max_response * hill * u / (ed50 * denom)
    return np.column_stack([d_hill, d_max, d_ed50])
