"""Tests for replicate combination and batch-effect adjustment."""

import numpy as np
import pandas as pd
import pytest

from coral_ed50.assessment.batch_variance import (
    adjust_batch_effects,
    adjust_records,
    combine_replicates,
    inverse_variance_mean,
    validate_batch_design,
)
from coral_ed50.assessment.ed50 import ED50Record
from coral_ed50.exceptions import UnbalancedDesignError


class TestInverseVarianceMean:
    def test_equal_errors_reduce_to_plain_mean(self):
        mean, se = inverse_variance_mean([10.0, 12.0], [1.0, 1.0])
        assert mean == 11.0
        assert se == 1.0

    def test_weights_favor_precise_replicate(self):
        mean, se = inverse_variance_mean([10.0, 12.0], [1.0, 2.0])
        assert mean == pytest.approx(10.4)
        # unweighted mean of the replicate errors
        assert se == pytest.approx(1.5)

    def test_single_replicate(self):
        assert inverse_variance_mean([35.5], [0.2]) == (35.5, 0.2)

    @pytest.mark.parametrize("se", [[0.0, 1.0], [-1.0, 1.0], [np.nan, 1.0]])
    def test_invalid_errors(self, se):
        with pytest.raises(ValueError):
            inverse_variance_mean([10.0, 12.0], se)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            inverse_variance_mean([10.0, 12.0], [1.0])


class TestCombineReplicates:
    def test_combines_per_key(self):
        df = pd.DataFrame(
            {
                "group_id": ["G1", "G1", "G2"],
                "year": [2023, 2023, 2023],
                "ed50": [10.0, 12.0, 36.0],
                "ed50_std_error": [1.0, 1.0, 0.3],
            }
        )
        out = combine_replicates(df, ["group_id", "year"])

        assert len(out) == 2
        g1 = out.loc[out["group_id"] == "G1"].iloc[0]
        assert g1["ed50"] == 11.0
        assert g1["ed50_std_error"] == 1.0
        assert g1["n_replicates"] == 2
        g2 = out.loc[out["group_id"] == "G2"].iloc[0]
        assert g2["ed50"] == 36.0
        assert g2["n_replicates"] == 1

    def test_missing_column(self):
        with pytest.raises(ValueError, match="not in DataFrame"):
            combine_replicates(pd.DataFrame({"group_id": ["G1"]}), ["group_id"])


def _two_nurseries() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "group_id": ["A1", "A2", "A3", "B1", "B2", "B3"],
            "nursery": ["A", "A", "A", "B", "B", "B"],
            "ed50": [35.0, 36.0, 37.0, 36.0, 37.0, 38.0],
        }
    )


class TestAdjustBatchEffects:
    def test_removes_offset_and_centers_on_grand_mean(self):
        out = adjust_batch_effects(
            _two_nurseries(), ["nursery"], allow_nested=["nursery"]
        )

        np.testing.assert_allclose(
            out["ed50_adjusted"], [35.5, 36.5, 37.5, 35.5, 36.5, 37.5]
        )
        assert out["ed50_adjusted"].mean() == pytest.approx(out["ed50"].mean())

    def test_preserves_within_batch_rank(self):
        df = _two_nurseries()
        df["ed50"] = [35.0, 37.3, 36.1, 38.2, 36.4, 37.0]
        out = adjust_batch_effects(df, ["nursery"], allow_nested=["nursery"])
        for _, g in out.groupby("nursery"):
            assert list(g["ed50"].rank()) == list(g["ed50_adjusted"].rank())

    def test_two_factors(self):
        df = pd.DataFrame(
            {
                "group_id": ["G1", "G2", "G3", "G4"] * 2,
                "nursery": ["A", "A", "B", "B"] * 2,
                "year": [2022] * 4 + [2023] * 4,
                "ed50": [35.0, 36.0, 36.0, 37.0, 35.5, 36.5, 36.5, 37.5],
            }
        )
        out = adjust_batch_effects(df, ["nursery", "year"], allow_nested=["nursery"])

        # Additive offsets only; the adjusted values keep G1 < G2 and G3 < G4
        adj = out["ed50_adjusted"].values
        assert adj[0] < adj[1]
        assert adj[2] < adj[3]
        np.testing.assert_allclose(adj[:4], adj[4:])

    def test_does_not_modify_input(self):
        df = _two_nurseries()
        adjust_batch_effects(df, ["nursery"], allow_nested=["nursery"])
        assert "ed50_adjusted" not in df.columns

    def test_duplicate_group_batch_rejected(self):
        df = pd.concat([_two_nurseries(), _two_nurseries().iloc[[0]]])
        with pytest.raises(UnbalancedDesignError, match="combine replicates"):
            adjust_batch_effects(df, ["nursery"])

    def test_incomplete_group_rejected_before_fit(self):
        df = pd.DataFrame(
            {
                "group_id": ["G1", "G1", "G2"],
                "year": [2022, 2023, 2022],
                "ed50": [35.0, 35.5, 36.0],
            }
        )
        with pytest.raises(UnbalancedDesignError, match="lack a level"):
            adjust_batch_effects(df, ["year"])

    def test_nested_groups_rejected_unless_allowed(self):
        with pytest.raises(UnbalancedDesignError, match="lack a level of 'nursery'"):
            adjust_batch_effects(_two_nurseries(), ["nursery"])

    def test_allow_nested_must_name_batch_columns(self):
        with pytest.raises(ValueError, match="not in batch_cols"):
            adjust_batch_effects(
                _two_nurseries(), ["nursery"], allow_nested=["year"]
            )

    def test_missing_labels_rejected(self):
        df = _two_nurseries()
        df.loc[2, "nursery"] = None
        with pytest.raises(UnbalancedDesignError, match="Missing values"):
            validate_batch_design(df, ["nursery"])

    def test_missing_batch_column(self):
        with pytest.raises(UnbalancedDesignError, match="not in DataFrame"):
            adjust_batch_effects(_two_nurseries(), ["year"])

    def test_requires_batch_columns(self):
        with pytest.raises(ValueError):
            adjust_batch_effects(_two_nurseries(), [])


class TestAdjustRecords:
    def test_sets_adjusted_estimate(self):
        df = _two_nurseries()
        records = [
            ED50Record(g, e, 0.1, {"nursery": n}, "filtered")
            for g, n, e in zip(df["group_id"], df["nursery"], df["ed50"])
        ]
        adjusted = adjust_records(records, ["nursery"], allow_nested=["nursery"])

        assert [r.group_id for r in adjusted] == list(df["group_id"])
        assert [r.adjusted_estimate for r in adjusted] == pytest.approx(
            [35.5, 36.5, 37.5, 35.5, 36.5, 37.5]
        )
        assert all(r.adjusted_estimate is None for r in records)

    def test_missing_batch_label(self):
        records = [ED50Record("G1", 35.0, 0.1, {}, "filtered")]
        with pytest.raises(UnbalancedDesignError):
            adjust_records(records, ["nursery"])
