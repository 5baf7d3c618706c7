"""
Fit configuration: parameter bounds and outlier-filter settings.

Everything here is passed per invocation; nothing is read from global state.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional

import numpy as np

from coral_ed50.constants import (
    CBASS_TEMPERATURES,
    DEFAULT_ED50_BOUNDS,
    DEFAULT_HILL_BOUNDS,
    DEFAULT_INFLUENCE_SCALE,
    DEFAULT_MAX_NFEV,
    DEFAULT_MAX_RESPONSE_BOUNDS,
    DEFAULT_REMOVAL_FRACTION,
    PARAM_NAMES,
)

MaskPolicy = Literal["exclude", "fitted"]


@dataclass(frozen=True)
class ParameterBounds:
    """Lower/upper limits for (hill, max_response, ed50)."""

    hill: tuple[float, float] = DEFAULT_HILL_BOUNDS
    max_response: tuple[float, float] = DEFAULT_MAX_RESPONSE_BOUNDS
    ed50: tuple[float, float] = DEFAULT_ED50_BOUNDS

    def __post_init__(self) -> None:
        for name in PARAM_NAMES:
            lo, hi = getattr(self, name)
            if not lo < hi:
                raise ValueError(
                    f"Bounds for '{name}' must satisfy lower < upper, got ({lo}, {hi})"
                )

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (lower, upper) arrays in PARAM_NAMES order for curve_fit."""
        lower = np.array([getattr(self, n)[0] for n in PARAM_NAMES], dtype=float)
        upper = np.array([getattr(self, n)[1] for n in PARAM_NAMES], dtype=float)
        return lower, upper


@dataclass(frozen=True)
class FitConfig:
    """
    Configuration for one fitting pass plus the outlier filter.

    Args:
        bounds: Parameter bounds, or None to fit unbounded.
        influence_scale: Numerator k of the influence threshold k / n.
        removal_fraction: Cap on masked points, floor(n * removal_fraction).
        protected_levels: Stimulus levels whose points are never masked.
        mask_policy: "exclude" sets masked responses to missing; "fitted"
            replaces them with the prior pass's fitted value.
        max_nfev: Solver evaluation cap; exceeding it is a fit failure.
    """

    bounds: Optional[ParameterBounds] = field(default_factory=ParameterBounds)
    influence_scale: float = DEFAULT_INFLUENCE_SCALE
    removal_fraction: float = DEFAULT_REMOVAL_FRACTION
    protected_levels: tuple[float, ...] = ()
    mask_policy: MaskPolicy = "exclude"
    max_nfev: int = DEFAULT_MAX_NFEV

    def __post_init__(self) -> None:
        if not 0.0 <= self.removal_fraction < 1.0:
            raise ValueError(
                f"removal_fraction must be in [0, 1), got {self.removal_fraction}"
            )
        if self.influence_scale <= 0:
            raise ValueError(
                f"influence_scale must be positive, got {self.influence_scale}"
            )
        if self.mask_policy not in ("exclude", "fitted"):
            raise ValueError(
                f"mask_policy must be 'exclude' or 'fitted', got '{self.mask_policy}'"
            )
        if self.max_nfev < 1:
            raise ValueError(f"max_nfev must be >= 1, got {self.max_nfev}")
        object.__setattr__(
            self, "protected_levels", tuple(float(v) for v in self.protected_levels)
        )


# Short heat-ramp (CBASS) assay: bounded fit, ramp end points anchored
CBASS_CONFIG = FitConfig(
    bounds=ParameterBounds(),
    removal_fraction=0.15,
    protected_levels=(CBASS_TEMPERATURES[0], CBASS_TEMPERATURES[-1]),
    mask_policy="exclude",
)

# Long-duration bleaching assay: physical range differs, so no bounds
CLASSIC_CONFIG = FitConfig(
    bounds=None,
    removal_fraction=0.20,
    mask_policy="fitted",
)
