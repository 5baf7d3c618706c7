"""Shared fixtures: synthetic heat-ramp observations."""

import numpy as np
import pandas as pd
import pytest

from coral_ed50.fitting import log_logistic

RAMP = np.array([30.0, 31.5, 33.0, 34.5, 36.0, 37.5, 39.0])


def make_group(
    group_id,
    *,
    ed50=36.0,
    hill=30.0,
    max_response=0.6,
    temps=RAMP,
    replicates=2,
    noise=0.01,
    seed=0,
    **batch,
) -> pd.DataFrame:
    """Observations for one group drawn from the log-logistic model."""
    rng = np.random.default_rng(seed)
    x = np.repeat(np.asarray(temps, dtype=float), replicates)
    y = log_logistic(x, hill, max_response, ed50) + rng.normal(0, noise, len(x))
    df = pd.DataFrame(
        {"group_id": group_id, "stimulus_level": x, "response": np.clip(y, 0, 1)}
    )
    for col, value in batch.items():
        df[col] = value
    return df


@pytest.fixture
def observations() -> pd.DataFrame:
    groups = [
        make_group("G1", ed50=35.2, seed=1),
        make_group("G2", ed50=36.1, seed=2),
        make_group("G10", ed50=36.8, seed=3),
        make_group("G3", ed50=35.6, seed=4),
        # only three temperatures: cannot be fitted
        make_group("G4", temps=[30.0, 33.0, 36.0], seed=5),
    ]
    return pd.concat(groups, ignore_index=True)
