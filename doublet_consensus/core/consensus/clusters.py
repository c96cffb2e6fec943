"""Cluster aggregation: candidate statistics and cluster labels.

For every cluster among the joined cells:

- cell_count, imbalanced_count (quality_vote >= 1)
- candidate_count (total_vote >= candidate_threshold) and candidate_percent
- fold_change = candidate_percent / global_candidate_percent
- cluster_label = doublet iff fold_change >= fold_change_threshold

The global candidate percent is computed once over the joined set. When it is
zero the fold change is undefined (NaN) and every cluster is singlet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ...utils.stats import fold_change, percent, percent_series
from .errors import EMPTY_CLUSTER, UNDEFINED_FOLD_CHANGE, DataCondition
from .labels import DoubletLabel

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "cluster_id",
    "cell_count",
    "imbalanced_count",
    "candidate_count",
    "candidate_percent",
    "fold_change",
    "cluster_label",
]


@dataclass(frozen=True)
class ClusterSummary:
    """Candidate statistics of one cluster.

    Attributes
    ----------
    cluster_id : str
        Cluster identifier
    cell_count : int
        Joined cells in the cluster
    imbalanced_count : int
        Cells with at least one detector doublet call
    candidate_count : int
        Cells with total_vote >= candidate_threshold
    candidate_percent : float
        100 * candidate_count / cell_count
    fold_change : float
        candidate_percent over the global candidate percent (NaN if undefined)
    cluster_label : DoubletLabel
        singlet or doublet
    """

    cluster_id: str
    cell_count: int
    imbalanced_count: int
    candidate_count: int
    candidate_percent: float
    fold_change: float
    cluster_label: DoubletLabel

    @property
    def is_doublet(self) -> bool:
        return self.cluster_label == DoubletLabel.DOUBLET

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (NaN fold change becomes None)."""
        return {
            "cluster_id": self.cluster_id,
            "cell_count": self.cell_count,
            "imbalanced_count": self.imbalanced_count,
            "candidate_count": self.candidate_count,
            "candidate_percent": round(self.candidate_percent, 4),
            "fold_change": (
                None if np.isnan(self.fold_change) else round(self.fold_change, 4)
            ),
            "cluster_label": str(self.cluster_label),
        }


@dataclass
class ClusterAggregation:
    """Output of the cluster aggregator.

    Attributes
    ----------
    summaries : List[ClusterSummary]
        One summary per non-empty cluster, in natural cluster order
    global_candidate_percent : float
        Candidate percent over all joined cells
    n_joined_cells : int
        Number of joined cells
    n_candidates : int
        Number of joined candidate cells
    conditions : List[DataCondition]
        EmptyCluster / UndefinedFoldChange records
    """

    summaries: List[ClusterSummary] = field(default_factory=list)
    global_candidate_percent: float = float("nan")
    n_joined_cells: int = 0
    n_candidates: int = 0
    conditions: List[DataCondition] = field(default_factory=list)

    @property
    def n_doublet_clusters(self) -> int:
        return sum(1 for s in self.summaries if s.is_doublet)

    def label_map(self) -> Dict[str, DoubletLabel]:
        """Map cluster_id -> cluster label."""
        return {s.cluster_id: s.cluster_label for s in self.summaries}

    def get(self, cluster_id: str) -> Optional[ClusterSummary]:
        """Get the summary of one cluster."""
        for summary in self.summaries:
            if summary.cluster_id == str(cluster_id):
                return summary
        return None

    def to_frame(self) -> pd.DataFrame:
        """One row per cluster."""
        if not self.summaries:
            return pd.DataFrame(columns=SUMMARY_COLUMNS)
        df = pd.DataFrame([
            {
                "cluster_id": s.cluster_id,
                "cell_count": s.cell_count,
                "imbalanced_count": s.imbalanced_count,
                "candidate_count": s.candidate_count,
                "candidate_percent": s.candidate_percent,
                "fold_change": s.fold_change,
                "cluster_label": str(s.cluster_label),
            }
            for s in self.summaries
        ])
        return df[SUMMARY_COLUMNS]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "global_candidate_percent": (
                None
                if np.isnan(self.global_candidate_percent)
                else round(self.global_candidate_percent, 4)
            ),
            "n_joined_cells": self.n_joined_cells,
            "n_candidates": self.n_candidates,
            "n_clusters": len(self.summaries),
            "n_doublet_clusters": self.n_doublet_clusters,
            "clusters": [s.to_dict() for s in self.summaries],
        }


def cluster_sort_key(cluster_id: Any):
    """Natural order: numeric ids first (by value), then the rest by name."""
    text = str(cluster_id)
    try:
        return (0, float(text), text)
    except ValueError:
        return (1, 0.0, text)


def compute_global_candidate_percent(
    total_votes: pd.Series,
    candidate_threshold: int,
) -> float:
    """Percent of cells with ``total_vote >= candidate_threshold`` (NaN if empty)."""
    n_candidates = int((total_votes >= candidate_threshold).sum())
    return percent(n_candidates, len(total_votes))


def summarize_clusters(
    cell_votes: pd.DataFrame,
    candidate_threshold: int = 2,
    fold_change_threshold: float = 2.5,
    universe_clusters: Optional[Iterable[Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> ClusterAggregation:
    """Aggregate per-cell votes into cluster summaries and labels.

    Parameters
    ----------
    cell_votes : pd.DataFrame
        Joined cells with ``cluster_id``, ``quality_vote`` and ``total_vote``
    candidate_threshold : int
        Minimum total vote for a candidate cell
    fold_change_threshold : float
        Minimum fold change for a doublet cluster
    universe_clusters : Iterable, optional
        All cluster ids of the sample; ids without joined cells are reported
        as EmptyCluster
    logger : logging.Logger, optional
        Logger to use (module logger by default)

    Returns
    -------
    ClusterAggregation
        Summaries, baseline and data conditions
    """
    log = logger or logging.getLogger(__name__)

    is_candidate = cell_votes["total_vote"] >= candidate_threshold
    n_candidates = int(is_candidate.sum())
    global_pct = compute_global_candidate_percent(
        cell_votes["total_vote"], candidate_threshold
    )

    stats = (
        cell_votes.assign(
            imbalanced=(cell_votes["quality_vote"] >= 1).astype(int),
            candidate=is_candidate.astype(int),
        )
        .groupby("cluster_id", sort=False)
        .agg(
            cell_count=("total_vote", "size"),
            imbalanced_count=("imbalanced", "sum"),
            candidate_count=("candidate", "sum"),
        )
    )
    stats = stats[stats["cell_count"] > 0].copy()
    stats["candidate_percent"] = percent_series(
        stats["candidate_count"], stats["cell_count"]
    )

    conditions: List[DataCondition] = []
    summaries: List[ClusterSummary] = []
    for cluster_id in sorted(stats.index, key=cluster_sort_key):
        row = stats.loc[cluster_id]
        fc = fold_change(row["candidate_percent"], global_pct)
        if np.isnan(fc):
            label = DoubletLabel.SINGLET
            conditions.append(DataCondition(
                code=UNDEFINED_FOLD_CHANGE,
                message=(
                    f"Cluster {cluster_id}: fold change undefined "
                    f"(global candidate percent is {global_pct}); labeled singlet"
                ),
                cluster_id=str(cluster_id),
            ))
        elif fc >= fold_change_threshold:
            label = DoubletLabel.DOUBLET
        else:
            label = DoubletLabel.SINGLET

        summaries.append(ClusterSummary(
            cluster_id=str(cluster_id),
            cell_count=int(row["cell_count"]),
            imbalanced_count=int(row["imbalanced_count"]),
            candidate_count=int(row["candidate_count"]),
            candidate_percent=float(row["candidate_percent"]),
            fold_change=fc,
            cluster_label=label,
        ))

    if conditions:
        log.info(
            "Global candidate percent is %s; fold change undefined for %d clusters",
            global_pct, len(conditions),
        )

    if universe_clusters is not None:
        present = {str(c) for c in stats.index}
        empty = sorted(
            {str(c) for c in universe_clusters} - present, key=cluster_sort_key
        )
        for cluster_id in empty:
            conditions.append(DataCondition(
                code=EMPTY_CLUSTER,
                message=f"Cluster {cluster_id} has no joined cells; excluded",
                cluster_id=cluster_id,
                count=0,
            ))
        if empty:
            log.warning("Excluded %d clusters without joined cells: %s", len(empty), empty)

    aggregation = ClusterAggregation(
        summaries=summaries,
        global_candidate_percent=global_pct,
        n_joined_cells=len(cell_votes),
        n_candidates=n_candidates,
        conditions=conditions,
    )
    log.info(
        "Clusters: %d total, %d doublet (global candidate percent %.2f%%, "
        "fold change threshold %.2f)",
        len(summaries), aggregation.n_doublet_clusters, global_pct, fold_change_threshold,
    )
    return aggregation
