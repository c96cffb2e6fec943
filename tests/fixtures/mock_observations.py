"""Mock per-cell observation generators for testing.

Provides functions to create cluster assignments, detector calls and
annotation scores with a known answer, without requiring real data.

Layout of ``create_mock_sources`` (defaults):

- 4 clusters ("0".."3") of 50 cells each
- Cluster "3" holds 40 cells called doublet by every detector, with low
  annotation scores; it is the only doublet cluster
- In the other clusters the first 2 cells are called doublet by the first
  detector only and have the highest annotation scores
- The last cell of cluster "0" is missing from the last detector
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import yaml

DEFAULT_DETECTORS = ("scDblFinder", "DoubletFinder", "scrublet")


def make_cell_ids(n_cells: int, start: int = 0, suffix: str = "-1") -> List[str]:
    """Create Cell Ranger style barcodes (CELL00000-1, CELL00001-1, ...)."""
    return [f"CELL{i:05d}{suffix}" for i in range(start, start + n_cells)]


def _format_call(is_doublet: bool, style: int):
    """Detector call in one of the formats real detectors write."""
    if style == 0:
        return "doublet" if is_doublet else "singlet"
    if style == 1:
        return "Doublet" if is_doublet else "Singlet"
    return bool(is_doublet)


def create_mock_sources(
    n_clusters: int = 4,
    cells_per_cluster: int = 50,
    doublet_cluster: Optional[str] = "3",
    n_doublet_cells: int = 40,
    detectors: Sequence[str] = DEFAULT_DETECTORS,
    n_missing: int = 1,
    atac_prefix: Optional[str] = None,
) -> Dict[str, object]:
    """Create mock source tables for one sample.

    Parameters
    ----------
    n_clusters : int
        Number of clusters
    cells_per_cluster : int
        Cells per cluster
    doublet_cluster : str, optional
        Cluster holding the doublet cells (None for no doublet cluster)
    n_doublet_cells : int
        Cells of the doublet cluster called doublet by every detector
    detectors : Sequence[str]
        Detector names
    n_missing : int
        Cells at the end of cluster "0" missing from the last detector
    atac_prefix : str, optional
        If given, the last detector uses ArchR ids (``<prefix>#<barcode>``)

    Returns
    -------
    Dict
        ``clusters`` (cell_id, cluster_id), ``annotation``
        (cell_id, annotation_score) and ``detectors`` (name -> DataFrame
        with cell_id, call)
    """
    cell_ids = make_cell_ids(n_clusters * cells_per_cluster)
    cluster_ids = np.repeat([str(c) for c in range(n_clusters)], cells_per_cluster)
    position = np.tile(np.arange(cells_per_cluster), n_clusters)

    in_doublet_cluster = cluster_ids == doublet_cluster
    is_doublet = in_doublet_cluster & (position < n_doublet_cells)
    is_imbalanced = ~in_doublet_cluster & (position < 2)

    scores = np.where(
        in_doublet_cluster,
        np.where(is_doublet, 0.2 + 0.001 * position, 0.9),
        0.9 - 0.001 * position,
    )

    clusters = pd.DataFrame({"cell_id": cell_ids, "cluster_id": cluster_ids})
    annotation = pd.DataFrame({"cell_id": cell_ids, "annotation_score": scores})

    missing = set()
    if n_missing:
        first_cluster = np.flatnonzero(cluster_ids == "0")
        missing = {cell_ids[i] for i in first_cluster[-n_missing:]}

    detector_tables = {}
    for k, name in enumerate(detectors):
        calls = is_doublet | (is_imbalanced if k == 0 else False)
        table = pd.DataFrame({
            "cell_id": cell_ids,
            "call": [_format_call(c, k % 3) for c in calls],
        })
        if k == len(detectors) - 1:
            table = table[~table["cell_id"].isin(missing)].reset_index(drop=True)
            if atac_prefix:
                table["cell_id"] = [f"{atac_prefix}#{c}" for c in table["cell_id"]]
        detector_tables[name] = table

    return {
        "clusters": clusters,
        "annotation": annotation,
        "detectors": detector_tables,
    }


def create_mock_store(sample_id: str = "sample_A", sources: Optional[Dict] = None, **kwargs):
    """Create an ObservationStore filled from ``create_mock_sources``."""
    from doublet_consensus.core.consensus import ObservationStore

    sources = sources or create_mock_sources(**kwargs)
    atac = kwargs.get("atac_prefix") is not None
    detectors = sources["detectors"]

    store = ObservationStore(sample_id)
    store.add_clusters(sources["clusters"], cluster_column="cluster_id", id_column="cell_id")
    for k, (name, table) in enumerate(detectors.items()):
        modality = "atac" if atac and k == len(detectors) - 1 else "rna"
        store.add_detector(name, table, call_column="call", id_column="cell_id", modality=modality)
    store.add_annotation(
        sources["annotation"], score_column="annotation_score", id_column="cell_id"
    )
    return store


def write_mock_sources(directory: Path, sources: Optional[Dict] = None) -> Dict[str, Path]:
    """Write mock sources to CSV/TSV files and return their paths."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    sources = sources or create_mock_sources()

    paths = {"clusters": directory / "clusters.csv", "annotation": directory / "annotation.tsv"}
    sources["clusters"].to_csv(paths["clusters"], index=False)
    sources["annotation"].to_csv(paths["annotation"], index=False, sep="\t")
    for name, table in sources["detectors"].items():
        paths[name] = directory / f"{name}.csv"
        table.to_csv(paths[name], index=False)
    return paths


def write_mock_config(
    directory: Path,
    sample_ids: Sequence[str] = ("sample_A",),
    thresholds: Optional[Dict] = None,
    n_workers: int = 1,
) -> Path:
    """Write mock sources for each sample plus a consensus YAML config.

    Source paths in the config are relative to its directory.
    """
    directory = Path(directory)
    samples = {}
    for sample_id in sample_ids:
        paths = write_mock_sources(directory / sample_id)
        detectors = {
            name: {"path": f"{sample_id}/{paths[name].name}", "value_column": "call"}
            for name in DEFAULT_DETECTORS
        }
        samples[sample_id] = {
            "clusters": {"path": f"{sample_id}/clusters.csv", "value_column": "cluster_id"},
            "annotation": {"path": f"{sample_id}/annotation.tsv"},
            "detectors": detectors,
        }

    config = {
        "consensus": {
            "thresholds": thresholds or {},
            "n_workers": n_workers,
            "output_dir": "out",
            "samples": samples,
        }
    }
    path = directory / "consensus.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    return path


def create_mock_adata(cell_ids: Sequence[str], n_genes: int = 5, seed: int = 42) -> "AnnData":
    """Create a small AnnData with the given obs_names."""
    import anndata as ad

    rng = np.random.default_rng(seed)
    X = rng.poisson(1.0, size=(len(cell_ids), n_genes)).astype(np.float32)
    obs = pd.DataFrame(index=pd.Index(list(cell_ids)))
    obs["n_counts"] = X.sum(axis=1)
    var = pd.DataFrame(index=[f"Gene_{i}" for i in range(n_genes)])
    return ad.AnnData(X=X, obs=obs, var=var)
