"""Per-cell vote calculation.

Two votes are derived for every joined cell:

- quality_vote: number of detectors calling the cell a doublet
- type_vote: 1 for the ``imbalanced_count`` cells of each cluster with the
  lowest annotation confidence, where ``imbalanced_count`` is the number of
  cells in the cluster with at least one detector doublet call

``total_vote = quality_vote + type_vote`` ranges over ``0..n_detectors + 1``.

Example
-------
>>> votes = compute_cell_votes(joined, detectors=["scDblFinder", "DoubletFinder"])
>>> votes[["quality_vote", "type_vote", "total_vote"]].head()
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import InvalidDetectorCall

DOUBLET_TOKENS = frozenset({"doublet", "true", "t", "yes", "1"})
SINGLET_TOKENS = frozenset({"singlet", "false", "f", "no", "0"})


def normalize_call(value: Any) -> Optional[bool]:
    """Read one detector call as doublet (True) or singlet (False).

    Accepts booleans, 0/1 and the strings doublet/singlet, true/false,
    yes/no (case-insensitive, surrounding whitespace ignored).

    Parameters
    ----------
    value : Any
        Raw detector call

    Returns
    -------
    Optional[bool]
        True for doublet, False for singlet, None for a missing call

    Raises
    ------
    ValueError
        If the value is not a recognised call
    """
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if not isinstance(value, str):
        if pd.isna(value):
            return None
        if isinstance(value, (int, float, np.integer, np.floating)) and value in (0, 1):
            return bool(value)
        raise ValueError(f"Unrecognised detector call: {value!r}")

    token = value.strip().lower()
    if token in DOUBLET_TOKENS:
        return True
    if token in SINGLET_TOKENS:
        return False
    if token in ("", "nan", "na"):
        return None
    raise ValueError(f"Unrecognised detector call: {value!r}")


def normalize_calls(calls: pd.Series, detector: str = "detector") -> pd.Series:
    """Normalize a Series of detector calls.

    Parameters
    ----------
    calls : pd.Series
        Raw calls indexed by cell id
    detector : str
        Detector name (for error messages)

    Returns
    -------
    pd.Series
        Object Series of True / False / None, same index as ``calls``

    Raises
    ------
    InvalidDetectorCall
        If any call is unrecognised (all offending values are reported)
    """
    normalized: List[Optional[bool]] = []
    invalid = []
    for value in calls.tolist():
        try:
            normalized.append(normalize_call(value))
        except ValueError:
            invalid.append(value)
            normalized.append(None)

    if invalid:
        raise InvalidDetectorCall(detector, sorted({str(v) for v in invalid}))

    return pd.Series(normalized, index=calls.index, dtype=object, name=calls.name)


def compute_quality_votes(joined: pd.DataFrame, detectors: Sequence[str]) -> pd.Series:
    """Count detector doublet calls per cell.

    Parameters
    ----------
    joined : pd.DataFrame
        Joined observations with one boolean column per detector
    detectors : Sequence[str]
        Detector column names

    Returns
    -------
    pd.Series
        Integer quality vote per cell (0..len(detectors))
    """
    missing = [d for d in detectors if d not in joined.columns]
    if missing:
        raise KeyError(f"Detector columns not found in joined observations: {missing}")

    if not detectors:
        return pd.Series(0, index=joined.index, dtype=int, name="quality_vote")

    votes = joined[list(detectors)].astype(bool).sum(axis=1).astype(int)
    votes.name = "quality_vote"
    return votes


def compute_type_votes(
    annotation_scores: pd.Series,
    cluster_ids: pd.Series,
    quality_votes: pd.Series,
) -> pd.Series:
    """Assign the rank-based type vote within each cluster.

    Cells of a cluster are ordered by ascending annotation score (missing
    scores last, ties by input order) and the first ``imbalanced_count`` of
    them receive a vote, where ``imbalanced_count`` is the number of cells in
    the cluster with ``quality_vote >= 1`` clamped to the cluster size.

    Parameters
    ----------
    annotation_scores : pd.Series
        Annotation confidence per cell
    cluster_ids : pd.Series
        Cluster assignment per cell
    quality_votes : pd.Series
        Quality vote per cell

    All three Series share the same index, in input order.

    Returns
    -------
    pd.Series
        Type vote (0 or 1) per cell, same index as the inputs
    """
    frame = pd.DataFrame({
        "cluster_id": cluster_ids.to_numpy(),
        "score": annotation_scores.astype(float).to_numpy(),
        "imbalanced": (quality_votes.to_numpy() >= 1).astype(int),
        "order": np.arange(len(cluster_ids)),
    })

    ranked = frame.sort_values(["score", "order"], na_position="last")
    groups = ranked.groupby("cluster_id", sort=False)
    rank = groups.cumcount()
    cluster_size = groups["order"].transform("count")
    quota = groups["imbalanced"].transform("sum").clip(lower=0, upper=cluster_size)

    votes = (rank < quota).astype(int).sort_index()
    return pd.Series(votes.to_numpy(), index=cluster_ids.index, name="type_vote")


def compute_cell_votes(joined: pd.DataFrame, detectors: Sequence[str]) -> pd.DataFrame:
    """Compute quality, type and total votes for every joined cell.

    Parameters
    ----------
    joined : pd.DataFrame
        Output of ObservationStore.join() (cluster_id, annotation_score and
        one boolean column per detector)
    detectors : Sequence[str]
        Detector column names

    Returns
    -------
    pd.DataFrame
        Copy of ``joined`` with quality_vote, type_vote and total_vote columns
    """
    quality = compute_quality_votes(joined, detectors)
    type_vote = compute_type_votes(
        joined["annotation_score"], joined["cluster_id"], quality
    )
    return joined.assign(
        quality_vote=quality,
        type_vote=type_vote,
        total_vote=quality + type_vote,
    )
