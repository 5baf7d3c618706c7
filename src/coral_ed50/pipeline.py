"""
End-to-end ED50 pipeline over an observation table.

Each group (group_id plus any batch columns) is fitted, filtered for
high-influence points and refitted once. Groups are independent, so the
per-group pass can run in a process pool; results are always ordered by
group key. Batch adjustment runs after every group has been fitted.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coral_ed50.assessment.batch_variance import adjust_batch_effects
from coral_ed50.assessment.ed50 import ED50Record, build_record
from coral_ed50.assessment.outliers import OutlierDecision, refit_without_outliers
from coral_ed50.config import FitConfig
from coral_ed50.constants import (
    GROUP_COL,
    OUTPUT_COLUMNS,
    PASS_FILTERED,
    PASS_UNFILTERED,
    RESPONSE_COL,
    STIMULUS_COL,
)
from coral_ed50.data import validate_observations
from coral_ed50.exceptions import FitFailedError, MissingParameterError
from coral_ed50.fitting import FitResult, FitSuccess, fit_group
from coral_ed50.utils.natural_sort import natural_sort_key

logger = logging.getLogger(__name__)


@dataclass
class GroupResult:
    """Both fitting passes for one group."""

    group_id: str
    batch_ids: dict[str, object]
    n_observations: int
    unfiltered: FitResult
    decision: Optional[OutlierDecision]
    filtered: FitResult
    records: dict[str, ED50Record] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def rows(self) -> list[dict]:
        """Output rows, one per pass, including explicit failure rows."""
        out = []
        n_masked = self.decision.n_masked if self.decision is not None else 0
        for pass_name, result in (
            (PASS_UNFILTERED, self.unfiltered),
            (PASS_FILTERED, self.filtered),
        ):
            rec = self.records.get(pass_name)
            row = {GROUP_COL: self.group_id, **self.batch_ids, "pass_name": pass_name}
            row["ed50"] = rec.estimate if rec else np.nan
            row["ed50_std_error"] = rec.std_error if rec else np.nan
            row["ed50_adjusted"] = np.nan
            if isinstance(result, FitSuccess):
                row["n_points_used"] = result.fit.n_points
                row["hill"] = result.fit.params.get("hill", np.nan)
                row["max_response"] = result.fit.params.get("max_response", np.nan)
            else:
                row["n_points_used"] = result.n_points
                row["hill"] = row["max_response"] = np.nan
            row["n_points_masked"] = n_masked if pass_name == PASS_FILTERED else 0
            row["fit_success"] = rec is not None
            if rec is not None:
                row["failure_reason"] = ""
            elif pass_name in self.errors:
                row["failure_reason"] = self.errors[pass_name]
            else:
                row["failure_reason"] = getattr(result, "reason", "unknown")
            out.append(row)
        return out


@dataclass
class PipelineResult:
    """Per-group results plus the flattened output table."""

    groups: list[GroupResult]
    table: pd.DataFrame
    batch_cols: list[str]

    def records(self, pass_name: str = PASS_FILTERED) -> list[ED50Record]:
        return [
            g.records[pass_name] for g in self.groups if pass_name in g.records
        ]

    def ed50_table(self, pass_name: str = PASS_FILTERED) -> pd.DataFrame:
        """Successful rows of one pass (input for repeatability analyses)."""
        t = self.table
        return t.loc[(t["pass_name"] == pass_name) & t["fit_success"]].reset_index(
            drop=True
        )

    def summary(self) -> pd.DataFrame:
        """Success/failure counts per pass."""
        return (
            self.table.groupby("pass_name", sort=False)
            .agg(
                n_groups=("fit_success", "size"),
                n_success=("fit_success", "sum"),
            )
            .assign(n_failed=lambda d: d["n_groups"] - d["n_success"])
            .reset_index()
        )


def _record_or_error(
    group_id: str,
    result: FitResult,
    batch_ids: dict,
    pass_name: str,
) -> tuple[Optional[ED50Record], Optional[str]]:
    try:
        return (
            build_record(group_id, result, batch_ids=batch_ids, pass_name=pass_name),
            None,
        )
    except MissingParameterError as e:
        logger.error("Group %s (%s): %s", group_id, pass_name, e)
        return None, "missing_parameter"
    except FitFailedError:
        return None, None


def process_group(
    group_id: str,
    stimulus: np.ndarray,
    response: np.ndarray,
    config: FitConfig,
    batch_ids: Optional[dict] = None,
) -> GroupResult:
    """
    Fit, filter and refit one group.

    Args:
        group_id: Group identifier.
        stimulus: Stimulus level per observation.
        response: Response per observation (NaN for missing).
        config: Fit and outlier-filter configuration.
        batch_ids: Batch labels carried onto the records.

    Returns:
        GroupResult with an ED50Record for every successful pass.
    """
    batch_ids = dict(batch_ids or {})
    first = fit_group(stimulus, response, config.bounds, max_nfev=config.max_nfev)
    decision, second = refit_without_outliers(first, config)

    result = GroupResult(
        group_id=group_id,
        batch_ids=batch_ids,
        n_observations=len(stimulus),
        unfiltered=first,
        decision=decision,
        filtered=second,
    )
    for pass_name, fit_result in (
        (PASS_UNFILTERED, first),
        (PASS_FILTERED, second),
    ):
        rec, err = _record_or_error(group_id, fit_result, batch_ids, pass_name)
        if rec is not None:
            result.records[pass_name] = rec
        elif err is not None:
            result.errors[pass_name] = err
        else:
            logger.warning(
                "Group %s (%s): fit failed (%s)",
                group_id,
                pass_name,
                fit_result.reason,
            )
    return result


def _process_group_args(args: tuple) -> GroupResult:
    return process_group(*args)


def run_ed50_pipeline(
    observations: pd.DataFrame,
    config: FitConfig,
    *,
    batch_cols: Optional[Sequence[str]] = None,
    adjust_batches: bool = False,
    allow_nested: Sequence[str] = (),
    n_jobs: int = 1,
    group_col: str = GROUP_COL,
    stimulus_col: str = STIMULUS_COL,
    response_col: str = RESPONSE_COL,
) -> PipelineResult:
    """
    Estimate ED50 per group with one round of outlier removal.

    Args:
        observations: Observation table (validated here).
        config: Fit configuration (bounds, outlier settings).
        batch_cols: Batch label columns; groups are keyed by group_col plus
            these columns.
        adjust_batches: Fill ed50_adjusted by removing batch offsets (per
            pass, over successful records) in the table and in each
            group's ED50Records. Requires batch_cols.
        allow_nested: Batch columns a group need not cover at every level
            when adjusting; every other batch column must be complete.
        n_jobs: Worker processes for the per-group pass; 1 runs inline.
        group_col: Group identifier column.
        stimulus_col: Stimulus column.
        response_col: Response column.

    Returns:
        PipelineResult. The table holds one row per group per pass, failed
        fits included with fit_success=False and a failure_reason.
    """
    batch_cols = list(batch_cols or [])
    if adjust_batches and not batch_cols:
        raise ValueError("adjust_batches requires batch_cols")
    obs = validate_observations(
        observations,
        batch_cols=batch_cols,
        group_col=group_col,
        stimulus_col=stimulus_col,
        response_col=response_col,
    )

    key_cols = [group_col] + batch_cols
    tasks = []
    for key, g in obs.groupby(key_cols, sort=False):
        key = key if isinstance(key, tuple) else (key,)
        tasks.append(
            (
                str(key[0]),
                g[stimulus_col].values.astype(float),
                g[response_col].values.astype(float),
                config,
                dict(zip(batch_cols, key[1:])),
            )
        )
    tasks.sort(
        key=lambda t: (natural_sort_key(t[0]), [str(v) for v in t[4].values()])
    )
    logger.info("Fitting %d group(s) with n_jobs=%d", len(tasks), n_jobs)

    if n_jobs > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            groups = list(executor.map(_process_group_args, tasks))
    else:
        groups = [_process_group_args(t) for t in tasks]

    rows = [row for g in groups for row in g.rows()]
    table = pd.DataFrame(
        rows, columns=[GROUP_COL] + batch_cols + OUTPUT_COLUMNS
    )
    table = table.rename(columns={GROUP_COL: group_col})
    table["fit_success"] = table["fit_success"].astype(bool)

    if adjust_batches:
        table = _adjust_table(table, groups, batch_cols, group_col, allow_nested)

    result = PipelineResult(groups=groups, table=table, batch_cols=batch_cols)
    for _, s in result.summary().iterrows():
        logger.info(
            "%s pass: %d of %d group(s) fitted, %d failed",
            s["pass_name"],
            s["n_success"],
            s["n_groups"],
            s["n_failed"],
        )
    return result


def _adjust_table(
    table: pd.DataFrame,
    groups: list[GroupResult],
    batch_cols: list[str],
    group_col: str,
    allow_nested: Sequence[str],
) -> pd.DataFrame:
    """Adjust each pass and copy the adjusted values onto the group records."""
    out = table.copy()
    for pass_name in (PASS_UNFILTERED, PASS_FILTERED):
        sel = (out["pass_name"] == pass_name) & out["fit_success"]
        if not sel.any():
            continue
        adjusted = adjust_batch_effects(
            out.loc[sel],
            batch_cols,
            group_col=group_col,
            allow_nested=allow_nested,
        )
        values = adjusted["ed50_adjusted"].values
        out.loc[sel, "ed50_adjusted"] = values
        # Successful rows follow the order of groups holding a record
        holders = [g for g in groups if pass_name in g.records]
        for g, value in zip(holders, values):
            g.records[pass_name] = g.records[pass_name].with_adjustment(float(value))
    return out
