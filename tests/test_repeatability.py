"""Tests for test-retest repeatability."""

import numpy as np
import pandas as pd
import pytest

from coral_ed50.assessment.repeatability import (
    empirical_quantiles,
    kde_cdf,
    kde_quantiles,
    pair_sessions,
    select_high_confidence,
    summarize_repeatability,
)


@pytest.fixture
def sessions():
    test = pd.DataFrame(
        {
            "group_id": ["G1", "G2", "G3"],
            "ed50": [35.0, 35.5, 36.0],
            "ed50_std_error": [0.1, 0.3, 0.2],
        }
    )
    retest = pd.DataFrame(
        {
            "group_id": ["G1", "G2", "G3"],
            "ed50": [35.3, 35.4, 36.6],
            "ed50_std_error": [0.1, 0.4, 0.2],
        }
    )
    return test, retest


class TestPairSessions:
    def test_abs_diff(self, sessions):
        paired = pair_sessions(*sessions)
        np.testing.assert_allclose(paired["abs_diff"], [0.3, 0.1, 0.6])
        np.testing.assert_allclose(paired["diff"], [0.3, -0.1, 0.6])
        assert paired["combined_se"].iloc[1] == pytest.approx(0.5)

    def test_unmatched_groups_dropped(self, sessions):
        test, retest = sessions
        retest = retest.iloc[:2]
        paired = pair_sessions(test, retest)
        assert list(paired["group_id"]) == ["G1", "G2"]

    def test_without_std_errors(self, sessions):
        test, retest = sessions
        paired = pair_sessions(
            test[["group_id", "ed50"]], retest[["group_id", "ed50"]], se_col=None
        )
        assert "combined_se" not in paired.columns
        assert len(paired) == 3

    def test_duplicate_groups_rejected(self, sessions):
        test, retest = sessions
        with pytest.raises(ValueError, match="combine replicates"):
            pair_sessions(pd.concat([test, test.iloc[[0]]]), retest)

    def test_missing_column(self, sessions):
        test, retest = sessions
        with pytest.raises(ValueError, match="missing columns"):
            pair_sessions(test.drop(columns=["ed50"]), retest)


class TestHighConfidenceSubset:
    def test_keeps_lowest_combined_se(self, sessions):
        paired = pair_sessions(*sessions)
        subset = select_high_confidence(paired, 2)
        assert list(subset["group_id"]) == ["G1", "G3"]

    def test_invalid_k(self, sessions):
        with pytest.raises(ValueError):
            select_high_confidence(pair_sessions(*sessions), 0)


class TestQuantiles:
    def test_empirical_median(self):
        assert empirical_quantiles([0.3, 0.1, 0.6], [0.5]) == {0.5: pytest.approx(0.3)}

    def test_empirical_ignores_nan(self):
        q = empirical_quantiles([0.3, np.nan, 0.1, 0.6], [0.5])
        assert q[0.5] == pytest.approx(0.3)

    def test_kde_quantile_inverts_cdf(self):
        values = np.array([0.3, 0.1, 0.6, 0.2, 0.45])
        q = kde_quantiles(values, 0.1, [0.5, 0.9])
        for prob, x in q.items():
            assert kde_cdf(x, values, 0.1) == pytest.approx(prob, abs=1e-8)
        assert q[0.5] < q[0.9]

    def test_kde_narrow_bandwidth_approaches_sample_median(self):
        q = kde_quantiles([0.3, 0.1, 0.6], 1e-4, [0.5])
        assert q[0.5] == pytest.approx(0.3, abs=1e-3)

    def test_kde_bandwidth_must_be_positive(self):
        with pytest.raises(ValueError):
            kde_quantiles([0.1, 0.2], 0.0)


class TestSummarize:
    def test_scenario_median(self, sessions):
        result = summarize_repeatability(pair_sessions(*sessions), quantiles=[0.5, 0.9])
        assert result.n_groups == 3
        assert result.median_abs_diff == pytest.approx(0.3)
        assert result.mean_abs_diff == pytest.approx(1.0 / 3)
        assert result.empirical_quantiles[0.5] == pytest.approx(0.3)
        assert result.bandwidth is None
        assert result.kde_quantiles == {}
        assert result.pearson_r > 0.8

    def test_bandwidth_is_reported(self, sessions):
        result = summarize_repeatability(
            pair_sessions(*sessions),
            quantiles=[0.9],
            bandwidth=0.05,
            subset_label="top-2 by combined SE",
        )
        assert result.bandwidth == 0.05
        assert 0.9 in result.kde_quantiles
        frame = result.to_frame()
        assert frame["bandwidth"].iloc[0] == 0.05
        assert frame["subset"].iloc[0] == "top-2 by combined SE"

    def test_empty_input(self):
        empty = pd.DataFrame(columns=["ed50_1", "ed50_2", "abs_diff"])
        with pytest.raises(ValueError, match="No paired groups"):
            summarize_repeatability(empty)
