"""ConsensusEngine - main orchestrator for doublet consensus calling.

Runs the forward pass for one sample:

    ObservationStore.join -> compute_cell_votes -> summarize_clusters
    -> resolve_labels

and batches independent samples for multi-sample runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

import pandas as pd
from joblib import Parallel, delayed

from .clusters import ClusterAggregation, summarize_clusters
from .config import ConsensusConfig, ThresholdConfig
from .errors import MISSING_CELL, ConfigurationError, DataCondition
from .labels import DoubletLabel
from .resolver import resolve_labels
from .store import ObservationStore
from .votes import compute_cell_votes

logger = logging.getLogger(__name__)


@dataclass
class ConsensusResult:
    """Result of a consensus run on one sample.

    Attributes
    ----------
    sample_id : str
        Sample identifier
    cell_labels : pd.DataFrame
        Per-cell labels indexed by cell_id (see resolve_labels)
    clusters : ClusterAggregation
        Per-cluster summaries and global baseline
    detectors : List[str]
        Detector names used
    thresholds : ThresholdConfig
        Thresholds used
    conditions : List[DataCondition]
        Non-fatal data conditions
    source_counts : Dict[str, int]
        Identifiers per input source
    n_cells : int
        Cells in the universe
    n_joined : int
        Joined cells
    n_doublet : int
        Cells labeled doublet
    n_singlet : int
        Cells labeled singlet
    n_unclassified : int
        Cells labeled unclassified
    execution_time_seconds : float
        Execution time
    """

    sample_id: str = ""
    cell_labels: pd.DataFrame = field(default_factory=pd.DataFrame)
    clusters: ClusterAggregation = field(default_factory=ClusterAggregation)
    detectors: List[str] = field(default_factory=list)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    conditions: List[DataCondition] = field(default_factory=list)
    source_counts: Dict[str, int] = field(default_factory=dict)
    n_cells: int = 0
    n_joined: int = 0
    n_doublet: int = 0
    n_singlet: int = 0
    n_unclassified: int = 0
    execution_time_seconds: float = 0.0

    def __post_init__(self):
        self._update_counts()

    def _update_counts(self):
        """Update label counts from the cell label table."""
        self.n_cells = len(self.cell_labels)
        if "label" not in self.cell_labels.columns:
            return
        labels = self.cell_labels["label"]
        self.n_doublet = int((labels == str(DoubletLabel.DOUBLET)).sum())
        self.n_singlet = int((labels == str(DoubletLabel.SINGLET)).sum())
        self.n_unclassified = int((labels == str(DoubletLabel.UNCLASSIFIED)).sum())
        self.n_joined = self.n_doublet + self.n_singlet

    @property
    def doublet_rate(self) -> float:
        """Doublet fraction among classified cells."""
        if self.n_joined == 0:
            return 0.0
        return self.n_doublet / self.n_joined

    def label_counts(self) -> Dict[str, int]:
        """Map label -> number of cells."""
        return {
            str(DoubletLabel.SINGLET): self.n_singlet,
            str(DoubletLabel.DOUBLET): self.n_doublet,
            str(DoubletLabel.UNCLASSIFIED): self.n_unclassified,
        }

    def conditions_by_code(self) -> Dict[str, int]:
        """Map condition code -> number of records."""
        counts: Dict[str, int] = {}
        for condition in self.conditions:
            counts[condition.code] = counts.get(condition.code, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without the per-cell table)."""
        return {
            "sample_id": self.sample_id,
            "detectors": self.detectors,
            "thresholds": self.thresholds.to_dict(),
            "source_counts": self.source_counts,
            "n_cells": self.n_cells,
            "n_joined": self.n_joined,
            "label_counts": self.label_counts(),
            "doublet_rate": round(self.doublet_rate, 4),
            "clusters": self.clusters.to_dict(),
            "conditions": [c.to_dict() for c in self.conditions],
            "execution_time_seconds": round(self.execution_time_seconds, 2),
        }


@dataclass
class MultiSampleResult:
    """Result of a multi-sample consensus run.

    Attributes
    ----------
    results : Dict[str, ConsensusResult]
        Per-sample results, in input order
    samples_processed : List[str]
        Samples that were processed
    total_execution_time_seconds : float
        Total execution time
    """

    results: Dict[str, ConsensusResult] = field(default_factory=dict)
    samples_processed: List[str] = field(default_factory=list)
    total_execution_time_seconds: float = 0.0

    @property
    def n_total_cells(self) -> int:
        return sum(r.n_cells for r in self.results.values())

    @property
    def n_total_doublets(self) -> int:
        return sum(r.n_doublet for r in self.results.values())

    def get_result(self, sample_id: str) -> Optional[ConsensusResult]:
        """Get result for a specific sample."""
        return self.results.get(sample_id)

    def combined_cell_labels(self) -> pd.DataFrame:
        """All per-cell labels with a leading sample_id column."""
        frames = [
            result.cell_labels.reset_index().assign(sample_id=sample_id)
            for sample_id, result in self.results.items()
        ]
        if not frames:
            return pd.DataFrame()
        combined = pd.concat(frames, ignore_index=True)
        columns = ["sample_id"] + [c for c in combined.columns if c != "sample_id"]
        return combined[columns]

    def combined_cluster_summary(self) -> pd.DataFrame:
        """All cluster summaries with a leading sample_id column."""
        frames = [
            result.clusters.to_frame().assign(sample_id=sample_id)
            for sample_id, result in self.results.items()
        ]
        if not frames:
            return pd.DataFrame()
        combined = pd.concat(frames, ignore_index=True)
        columns = ["sample_id"] + [c for c in combined.columns if c != "sample_id"]
        return combined[columns]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "samples_processed": self.samples_processed,
            "n_total_cells": self.n_total_cells,
            "n_total_doublets": self.n_total_doublets,
            "total_execution_time_seconds": round(self.total_execution_time_seconds, 2),
            "per_sample": {
                sample_id: result.to_dict() for sample_id, result in self.results.items()
            },
        }


class ConsensusEngine:
    """Engine for consensus doublet calling.

    Parameters
    ----------
    config : ConsensusConfig, optional
        Run configuration (default thresholds when omitted)
    logger : logging.Logger, optional
        Logger to use

    Raises
    ------
    ConfigurationError
        If the thresholds are invalid

    Example
    -------
    >>> from doublet_consensus.core.consensus import ConsensusEngine, ConsensusConfig
    >>> config = ConsensusConfig.from_yaml("consensus.yaml")
    >>> engine = ConsensusEngine(config)
    >>> multi = engine.execute_multi()
    >>> multi.get_result("sample_A").label_counts()
    """

    def __init__(
        self,
        config: Optional[ConsensusConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ConsensusConfig.default()
        self.logger = logger or logging.getLogger(__name__)

        valid, errors = self.config.thresholds.validate()
        if not valid:
            raise ConfigurationError("Invalid thresholds", errors)

    @property
    def thresholds(self) -> ThresholdConfig:
        return self.config.thresholds

    def execute(
        self,
        store: ObservationStore,
        sample_id: Optional[str] = None,
    ) -> ConsensusResult:
        """Run the consensus pass on one sample.

        Parameters
        ----------
        store : ObservationStore
            Registered observations of the sample
        sample_id : str, optional
            Sample identifier (defaults to the store's)

        Returns
        -------
        ConsensusResult
            Per-cell labels, cluster summaries and data conditions

        Raises
        ------
        ConfigurationError
            If a required source is missing
        JoinMismatch
            If a source shares no identifiers with the others
        """
        start_time = time.time()
        sample_id = sample_id or store.sample_id
        thresholds = self.thresholds

        self.logger.info("=" * 70)
        self.logger.info("Consensus doublet calling: %s", sample_id or "<unnamed>")
        self.logger.info("=" * 70)

        joined = store.join()
        detectors = store.detector_names
        cell_votes = compute_cell_votes(joined, detectors)

        aggregation = summarize_clusters(
            cell_votes,
            candidate_threshold=thresholds.candidate_threshold,
            fold_change_threshold=thresholds.fold_change_threshold,
            universe_clusters=store.cluster_assignments.unique(),
            logger=self.logger,
        )

        cell_labels = resolve_labels(
            store.universe(),
            cell_votes,
            aggregation.label_map(),
            final_vote_threshold=thresholds.final_vote_threshold,
            cluster_assignments=store.cluster_assignments,
        )

        conditions = list(aggregation.conditions)
        n_missing = int((cell_labels["label"] == str(DoubletLabel.UNCLASSIFIED)).sum())
        if n_missing > 0:
            conditions.append(DataCondition(
                code=MISSING_CELL,
                message=(
                    f"{n_missing} cells are missing from at least one required "
                    "source; labeled unclassified"
                ),
                count=n_missing,
            ))
            self.logger.info(
                "%d of %d cells not joined; labeled unclassified",
                n_missing, len(cell_labels),
            )

        result = ConsensusResult(
            sample_id=sample_id,
            cell_labels=cell_labels,
            clusters=aggregation,
            detectors=detectors,
            thresholds=thresholds,
            conditions=conditions,
            source_counts=store.source_counts(),
        )
        result.execution_time_seconds = time.time() - start_time

        self.logger.info(
            "Labels: %d doublet, %d singlet, %d unclassified (doublet rate %.2f%%) in %.2fs",
            result.n_doublet, result.n_singlet, result.n_unclassified,
            100.0 * result.doublet_rate, result.execution_time_seconds,
        )
        return result

    def load_stores(self) -> Dict[str, ObservationStore]:
        """Load an ObservationStore for every configured sample.

        Raises
        ------
        ConfigurationError
            If the configuration is invalid (every error is listed)
        """
        valid, errors = self.config.validate(check_paths=True)
        if not valid:
            raise ConfigurationError("Invalid consensus configuration", errors)

        return {
            sample_id: ObservationStore.from_config(sample)
            for sample_id, sample in self.config.samples.items()
        }

    def execute_multi(
        self,
        stores: Optional[Dict[str, ObservationStore]] = None,
        n_workers: Optional[int] = None,
    ) -> MultiSampleResult:
        """Run the consensus pass on several independent samples.

        A fatal error in any sample aborts the whole run.

        Parameters
        ----------
        stores : Dict[str, ObservationStore], optional
            Stores keyed by sample id (loaded from the config when omitted)
        n_workers : int, optional
            Parallel workers (config value when omitted; 1 runs sequentially)

        Returns
        -------
        MultiSampleResult
            Per-sample results, in input order
        """
        start_time = time.time()
        if stores is None:
            stores = self.load_stores()
        n_workers = n_workers or self.config.n_workers

        result = MultiSampleResult()
        if not stores:
            self.logger.warning("No samples to process")
            return result

        sample_ids = list(stores)
        self.logger.info(
            "Running consensus on %d samples (n_workers=%d)", len(sample_ids), n_workers
        )

        if n_workers > 1 and len(sample_ids) > 1:
            # Identifiers are already canonical; workers need no modality registry
            worker_outputs = Parallel(n_jobs=n_workers, backend="loky", verbose=5)(
                delayed(_execute_sample)(self.thresholds, stores[sample_id], sample_id)
                for sample_id in sample_ids
            )
            outputs = []
            for sample_result, records in worker_outputs:
                self._replay(records)
                outputs.append(sample_result)
        else:
            outputs = [self.execute(stores[sample_id], sample_id) for sample_id in sample_ids]

        for sample_id, sample_result in zip(sample_ids, outputs):
            result.results[sample_id] = sample_result
            result.samples_processed.append(sample_id)

        result.total_execution_time_seconds = time.time() - start_time
        self.logger.info(
            "Multi-sample consensus complete: %d samples, %d cells, %d doublets in %.2fs",
            len(result.samples_processed), result.n_total_cells,
            result.n_total_doublets, result.total_execution_time_seconds,
        )
        return result

    def _replay(self, records: List[logging.LogRecord]) -> None:
        """Re-emit log records captured in a worker on this engine's logger."""
        for record in records:
            if self.logger.isEnabledFor(record.levelno):
                self.logger.handle(record)


class _RecordCollector(logging.Handler):
    """Keeps log records in memory so they can be shipped back from a worker."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        # Format now; args may not survive pickling
        record.msg = record.getMessage()
        record.args = None
        record.exc_info = None
        self.records.append(record)


def _execute_sample(
    thresholds: ThresholdConfig,
    store: ObservationStore,
    sample_id: str,
) -> Tuple[ConsensusResult, List[logging.LogRecord]]:
    """Worker entry point for parallel multi-sample runs.

    The parent's logger does not exist in the worker process, so the sample's
    log records are collected and returned with the result for the parent to
    replay.
    """
    worker_logger = logging.getLogger(f"{__name__}.worker")
    worker_logger.setLevel(logging.DEBUG)
    worker_logger.propagate = False
    collector = _RecordCollector()
    worker_logger.addHandler(collector)
    try:
        engine = ConsensusEngine(ConsensusConfig(thresholds=thresholds), logger=worker_logger)
        result = engine.execute(store, sample_id)
    finally:
        worker_logger.removeHandler(collector)
    return result, collector.records
