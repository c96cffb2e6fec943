"""Statistical utilities for doublet-consensus.

Provides the percentage and fold-change helpers used by the cluster
aggregator. Both return NaN instead of raising when the denominator is zero.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd

Numeric = Union[int, float, np.integer, np.floating]


def percent(count: Numeric, total: Numeric) -> float:
    """Return ``100 * count / total``.

    Parameters
    ----------
    count : Numeric
        Numerator (e.g. number of candidate cells)
    total : Numeric
        Denominator (e.g. number of cells)

    Returns
    -------
    float
        Percentage (0 to 100). Returns NaN if total is zero.
    """
    if total == 0:
        return float("nan")
    return 100.0 * float(count) / float(total)


def fold_change(value: Numeric, baseline: Numeric) -> float:
    """Return ``value / baseline``.

    Parameters
    ----------
    value : Numeric
        Observed rate (e.g. a cluster's candidate percent)
    baseline : Numeric
        Reference rate (e.g. the dataset-wide candidate percent)

    Returns
    -------
    float
        Ratio. Returns NaN if the baseline is zero or not finite, since no
        amplification signal is available.
    """
    if baseline == 0 or not np.isfinite(baseline):
        return float("nan")
    return float(value) / float(baseline)


def percent_series(counts: pd.Series, totals: pd.Series) -> pd.Series:
    """Vectorized ``percent`` over aligned Series (NaN where total is zero)."""
    totals = totals.astype(float)
    return 100.0 * counts.astype(float) / totals.where(totals != 0)
