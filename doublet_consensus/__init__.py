"""doublet-consensus: Consensus doublet calling for single-cell sequencing data.

This package combines the per-cell calls of several independent doublet
detectors (scDblFinder, DoubletFinder, Scrublet, AMULET, ...) with a
cell-type annotation confidence signal:

- Observation store joining per-cell sources across identifier conventions
- Per-cell quality and type votes
- Cluster-level fold-change amplification of doublet candidates
- A three-state final label (singlet, doublet, unclassified)

Example usage:
    >>> from doublet_consensus.core.consensus import ConsensusEngine, ObservationStore
    >>>
    >>> store = ObservationStore("sample_A")
    >>> store.add_clusters(clusters_df, cluster_column="seurat_clusters")
    >>> store.add_detector("scDblFinder", scdbl_df, call_column="class")
    >>> store.add_annotation(azimuth_df, score_column="predicted.celltype.score")
    >>> result = ConsensusEngine().execute(store)
"""

__version__ = "0.1.0"
