"""
Boundary validation for the observation table.

The ingestion collaborator delivers one row per AOI/temperature reading with
group_id, stimulus_level, response and optional batch columns. Rows that break
the physical contract are rejected here instead of being passed downstream.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coral_ed50.constants import GROUP_COL, RESPONSE_COL, STIMULUS_COL
from coral_ed50.exceptions import ObservationError

logger = logging.getLogger(__name__)


def validate_observations(
    df: pd.DataFrame,
    *,
    batch_cols: Optional[Sequence[str]] = None,
    group_col: str = GROUP_COL,
    stimulus_col: str = STIMULUS_COL,
    response_col: str = RESPONSE_COL,
) -> pd.DataFrame:
    """
    Check an observation table against the input contract.

    Responses may be missing (NaN) but otherwise must lie in [0, 1]; stimulus
    levels must be present and non-negative; group and batch labels must be
    present.

    Args:
        df: Observation table.
        batch_cols: Batch label columns (e.g., ["nursery", "year"]).
        group_col: Genotype/colony identifier column.
        stimulus_col: Stimulus (temperature) column.
        response_col: Response (quantum yield) column.

    Returns:
        Copy of df with numeric stimulus/response columns.

    Raises:
        ObservationError: On any contract violation.
    """
    batch_cols = list(batch_cols or [])
    required = [group_col, stimulus_col, response_col] + batch_cols
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ObservationError(
            f"Observation table is missing columns {missing}. "
            f"Available: {list(df.columns)}"
        )

    out = df.copy()
    try:
        out[stimulus_col] = pd.to_numeric(out[stimulus_col]).astype(float)
        out[response_col] = pd.to_numeric(out[response_col]).astype(float)
    except (TypeError, ValueError) as e:
        raise ObservationError(f"Non-numeric stimulus or response values: {e}") from e

    for col in [group_col] + batch_cols:
        n_null = int(out[col].isna().sum())
        if n_null:
            raise ObservationError(f"{n_null} row(s) have no value in '{col}'")

    stim = out[stimulus_col].values
    if not np.isfinite(stim).all():
        raise ObservationError(
            f"'{stimulus_col}' contains missing or infinite values"
        )
    n_negative = int((stim < 0).sum())
    if n_negative:
        raise ObservationError(
            f"{n_negative} row(s) have negative '{stimulus_col}'"
        )

    resp = out[response_col].values
    present = ~np.isnan(resp)
    bad = present & ((resp < 0) | (resp > 1) | ~np.isfinite(resp))
    if bad.any():
        examples = out.loc[bad, [group_col, stimulus_col, response_col]].head(5)
        raise ObservationError(
            f"{int(bad.sum())} response value(s) outside [0, 1], e.g.:\n"
            f"{examples.to_string(index=False)}"
        )

    n_missing = int((~present).sum())
    if n_missing:
        logger.debug("%d observation(s) have a missing response", n_missing)
    return out
