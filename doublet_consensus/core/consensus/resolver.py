"""Consensus resolver: final three-state label for every cell of the universe.

Decision rule, first match wins:

1. cell not joined                     -> unclassified
2. cluster label is doublet            -> doublet
3. total_vote >= final_vote_threshold  -> doublet
4. otherwise                           -> singlet
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd

from .labels import (
    DECISION_BELOW_THRESHOLD,
    DECISION_CELL_VOTE,
    DECISION_CLUSTER,
    DECISION_NOT_JOINED,
    DoubletLabel,
)

VOTE_COLUMNS = ["quality_vote", "type_vote", "total_vote"]

CELL_LABEL_COLUMNS = [
    "cluster_id",
    "annotation_score",
    "quality_vote",
    "type_vote",
    "total_vote",
    "cluster_label",
    "label",
    "decision",
]


def resolve_labels(
    universe: pd.Index,
    cell_votes: pd.DataFrame,
    cluster_labels: Mapping[str, Any],
    final_vote_threshold: int = 3,
    cluster_assignments: Optional[pd.Series] = None,
) -> pd.DataFrame:
    """Resolve the final label of every cell in the universe.

    Parameters
    ----------
    universe : pd.Index
        All cell ids of the sample
    cell_votes : pd.DataFrame
        Joined cells with ``cluster_id`` and vote columns
    cluster_labels : Mapping[str, Any]
        cluster_id -> cluster label (DoubletLabel or its string value)
    final_vote_threshold : int
        Minimum total vote for a cell-level doublet call
    cluster_assignments : pd.Series, optional
        Cluster id of every clustered cell; fills ``cluster_id`` for cells
        that were not joined

    Returns
    -------
    pd.DataFrame
        Indexed by ``cell_id`` (universe order) with columns cluster_id,
        annotation_score, quality_vote, type_vote, total_vote (nullable
        Int64), cluster_label, label and decision
    """
    universe = pd.Index(universe, name="cell_id")
    joined = cell_votes.reindex(universe)
    is_joined = universe.isin(cell_votes.index)

    cluster_ids = joined["cluster_id"]
    if cluster_assignments is not None:
        cluster_ids = cluster_ids.fillna(cluster_assignments.reindex(universe))

    cluster_label = joined["cluster_id"].map(
        {str(k): str(v) for k, v in cluster_labels.items()}
    )
    total_vote = joined["total_vote"].astype("Int64")

    in_doublet_cluster = is_joined & (
        cluster_label == str(DoubletLabel.DOUBLET)
    ).to_numpy(dtype=bool)
    above_threshold = is_joined & (total_vote >= final_vote_threshold).to_numpy(
        dtype=bool, na_value=False
    )

    conditions = [~is_joined, in_doublet_cluster, above_threshold]
    label = np.select(
        conditions,
        [str(DoubletLabel.UNCLASSIFIED), str(DoubletLabel.DOUBLET), str(DoubletLabel.DOUBLET)],
        default=str(DoubletLabel.SINGLET),
    )
    decision = np.select(
        conditions,
        [DECISION_NOT_JOINED, DECISION_CLUSTER, DECISION_CELL_VOTE],
        default=DECISION_BELOW_THRESHOLD,
    )

    result = pd.DataFrame(index=universe)
    result["cluster_id"] = cluster_ids.to_numpy(dtype=object)
    result["annotation_score"] = joined["annotation_score"].astype(float).to_numpy()
    for column in VOTE_COLUMNS:
        result[column] = joined[column].astype("Int64").array
    result["cluster_label"] = cluster_label.to_numpy(dtype=object)
    result["label"] = label
    result["decision"] = decision
    return result[CELL_LABEL_COLUMNS]
