"""Consensus module for doublet calling.

This module joins per-cell observations from a cluster assignment, several
doublet detectors and an annotation confidence score, derives per-cell votes,
amplifies them at the cluster level and resolves a final label per cell.

Example Usage
-------------
Single sample:

    >>> from doublet_consensus.core.consensus import ConsensusEngine, ObservationStore
    >>> store = ObservationStore("sample_A")
    >>> store.add_clusters(clusters_df, cluster_column="seurat_clusters")
    >>> store.add_detector("scDblFinder", scdbl_df, call_column="class")
    >>> store.add_detector("amulet", amulet_df, call_column="is_doublet", modality="atac")
    >>> store.add_annotation(azimuth_df, score_column="predicted.celltype.score")
    >>> result = ConsensusEngine().execute(store)
    >>> print(result.label_counts())

From a YAML configuration:

    >>> from doublet_consensus.core.consensus import ConsensusConfig
    >>> config = ConsensusConfig.from_yaml("consensus.yaml")
    >>> multi = ConsensusEngine(config).execute_multi()

Export results:

    >>> from doublet_consensus.core.consensus import export_all
    >>> export_all(multi, Path("out/consensus/"))
"""

# Errors
from .errors import (
    ConsensusError,
    ConfigurationError,
    JoinMismatch,
    InvalidObservation,
    DuplicateCellId,
    InvalidDetectorCall,
    DataCondition,
    EMPTY_CLUSTER,
    UNDEFINED_FOLD_CHANGE,
    MISSING_CELL,
)

# Labels
from .labels import DoubletLabel

# Configuration
from .config import (
    ConsensusConfig,
    ThresholdConfig,
    SampleConfig,
    SourceConfig,
)

# Store
from .store import ObservationStore

# Votes
from .votes import (
    normalize_call,
    normalize_calls,
    compute_quality_votes,
    compute_type_votes,
    compute_cell_votes,
)

# Clusters
from .clusters import (
    ClusterSummary,
    ClusterAggregation,
    compute_global_candidate_percent,
    summarize_clusters,
)

# Resolver
from .resolver import resolve_labels

# Engine
from .engine import (
    ConsensusEngine,
    ConsensusResult,
    MultiSampleResult,
)

# Export
from .export import (
    export_cell_labels,
    export_cluster_summary,
    export_json,
    export_markdown,
    export_provenance,
    export_all,
)

__all__ = [
    # Errors
    "ConsensusError",
    "ConfigurationError",
    "JoinMismatch",
    "InvalidObservation",
    "DuplicateCellId",
    "InvalidDetectorCall",
    "DataCondition",
    "EMPTY_CLUSTER",
    "UNDEFINED_FOLD_CHANGE",
    "MISSING_CELL",
    # Labels
    "DoubletLabel",
    # Configuration
    "ConsensusConfig",
    "ThresholdConfig",
    "SampleConfig",
    "SourceConfig",
    # Store
    "ObservationStore",
    # Votes
    "normalize_call",
    "normalize_calls",
    "compute_quality_votes",
    "compute_type_votes",
    "compute_cell_votes",
    # Clusters
    "ClusterSummary",
    "ClusterAggregation",
    "compute_global_candidate_percent",
    "summarize_clusters",
    # Resolver
    "resolve_labels",
    # Engine
    "ConsensusEngine",
    "ConsensusResult",
    "MultiSampleResult",
    # Export
    "export_cell_labels",
    "export_cluster_summary",
    "export_json",
    "export_markdown",
    "export_provenance",
    "export_all",
]
