"""
ED50 extraction from converged fits.

A direct parameter lookup, but explicit about the two ways it can go wrong:
the fit failed (FitFailedError) or the fit converged without the expected
parameter (MissingParameterError, a model/extractor configuration mismatch).
"""

from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Sequence

import pandas as pd

from coral_ed50.constants import GROUP_COL
from coral_ed50.exceptions import FitFailedError, MissingParameterError
from coral_ed50.fitting import FitResult, FitSuccess


@dataclass(frozen=True)
class ED50Record:
    """ED50 estimate for one group from one fitting pass."""

    group_id: str
    estimate: float
    std_error: float
    batch_ids: Mapping[str, object] = field(default_factory=dict)
    pass_name: str = ""
    adjusted_estimate: Optional[float] = None

    def with_adjustment(self, adjusted: float) -> "ED50Record":
        return replace(self, adjusted_estimate=float(adjusted))


def extract_ed50(
    result: FitResult,
    *,
    param: str = "ed50",
) -> tuple[float, float]:
    """
    Return (estimate, std_error) for the named parameter.

    Raises:
        FitFailedError: result is a FitFailure.
        MissingParameterError: parameter or its standard error is absent.
    """
    if not isinstance(result, FitSuccess):
        raise FitFailedError(
            f"No {param} for a failed fit ({result.reason}): {result.message}"
        )
    fit = result.fit
    if param not in fit.params:
        raise MissingParameterError(
            f"Parameter '{param}' not in fitted model. "
            f"Available: {sorted(fit.params)}"
        )
    if param not in fit.std_errors:
        raise MissingParameterError(
            f"No standard error for parameter '{param}'. "
            f"Available: {sorted(fit.std_errors)}"
        )
    return fit.params[param], fit.std_errors[param]


def build_record(
    group_id: str,
    result: FitResult,
    *,
    batch_ids: Optional[Mapping[str, object]] = None,
    pass_name: str = "",
    param: str = "ed50",
) -> ED50Record:
    """Extract an ED50Record from a fit result (raises like extract_ed50)."""
    estimate, std_error = extract_ed50(result, param=param)
    return ED50Record(
        group_id=group_id,
        estimate=estimate,
        std_error=std_error,
        batch_ids=dict(batch_ids or {}),
        pass_name=pass_name,
    )


def records_to_frame(
    records: Sequence[ED50Record],
    *,
    group_col: str = GROUP_COL,
) -> pd.DataFrame:
    """
    Flatten ED50Records into a DataFrame.

    Columns: group_col, batch columns, pass_name, ed50, ed50_std_error,
    ed50_adjusted.
    """
    rows = []
    for rec in records:
        row = {group_col: rec.group_id}
        row.update(rec.batch_ids)
        row["pass_name"] = rec.pass_name
        row["ed50"] = rec.estimate
        row["ed50_std_error"] = rec.std_error
        row["ed50_adjusted"] = rec.adjusted_estimate
        rows.append(row)
    if not rows:
        return pd.DataFrame(
            columns=[group_col, "pass_name", "ed50", "ed50_std_error", "ed50_adjusted"]
        )
    out = pd.DataFrame(rows)
    out["ed50_adjusted"] = pd.to_numeric(out["ed50_adjusted"], errors="coerce")
    return out
