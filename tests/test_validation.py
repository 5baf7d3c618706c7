"""Tests for observation-table validation."""

import numpy as np
import pandas as pd
import pytest

from coral_ed50.data import validate_observations
from coral_ed50.exceptions import ObservationError


def _table(**overrides):
    df = pd.DataFrame(
        {
            "group_id": ["G1"] * 4,
            "stimulus_level": [30.0, 33.0, 36.0, 39.0],
            "response": [0.6, 0.55, 0.3, 0.05],
            "nursery": ["A"] * 4,
        }
    )
    for col, values in overrides.items():
        df[col] = values
    return df


class TestValidateObservations:
    def test_valid_table_passes(self):
        out = validate_observations(_table(), batch_cols=["nursery"])
        assert len(out) == 4
        assert out["response"].dtype == float

    def test_missing_response_allowed(self):
        out = validate_observations(_table(response=[0.6, np.nan, 0.3, 0.05]))
        assert out["response"].isna().sum() == 1

    @pytest.mark.parametrize("bad", [1.2, -0.01, np.inf])
    def test_response_out_of_range(self, bad):
        with pytest.raises(ObservationError, match=r"outside \[0, 1\]"):
            validate_observations(_table(response=[0.6, bad, 0.3, 0.05]))

    def test_negative_stimulus(self):
        with pytest.raises(ObservationError, match="negative"):
            validate_observations(_table(stimulus_level=[-1.0, 33.0, 36.0, 39.0]))

    def test_missing_stimulus(self):
        with pytest.raises(ObservationError, match="missing or infinite"):
            validate_observations(_table(stimulus_level=[np.nan, 33.0, 36.0, 39.0]))

    def test_non_numeric_response(self):
        with pytest.raises(ObservationError, match="Non-numeric"):
            validate_observations(_table(response=["0.6", "high", "0.3", "0.05"]))

    def test_missing_columns(self):
        with pytest.raises(ObservationError, match="missing columns"):
            validate_observations(_table(), batch_cols=["year"])

    def test_missing_group_label(self):
        with pytest.raises(ObservationError, match="group_id"):
            validate_observations(_table(group_id=["G1", None, "G1", "G1"]))

    def test_input_not_modified(self):
        df = _table(stimulus_level=["30", "33", "36", "39"])
        before = df.copy()
        validate_observations(df)
        pd.testing.assert_frame_equal(df, before)
