"""AnnData I/O for doublet-consensus.

Reads per-cell observations from an ``.h5ad`` file's ``obs`` table and writes
consensus labels back into ``adata.obs`` for downstream filtering.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from ..config.modality import get_modality_config

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_obs_table(path: PathLike) -> pd.DataFrame:
    """Read the ``obs`` table of an ``.h5ad`` file without loading X.

    Parameters
    ----------
    path : PathLike
        Path to the ``.h5ad`` file

    Returns
    -------
    pd.DataFrame
        Copy of ``adata.obs`` indexed by ``obs_names``
    """
    import anndata as ad

    adata = ad.read_h5ad(path, backed="r")
    try:
        obs = adata.obs.copy()
    finally:
        adata.file.close()
    logger.debug("Read obs (%d cells) from %s", len(obs), path)
    return obs


def annotate_adata(
    adata: "ad.AnnData",
    cell_labels: pd.DataFrame,
    prefix: str = "doublet_",
    modality: Optional[str] = None,
) -> "ad.AnnData":
    """Write consensus labels into ``adata.obs`` in place.

    Adds ``<prefix>label``, ``<prefix>total_vote`` and
    ``<prefix>cluster_label``. Cells of ``adata`` missing from ``cell_labels``
    are labeled ``unclassified``.

    Parameters
    ----------
    adata : AnnData
        AnnData to annotate
    cell_labels : pd.DataFrame
        Per-cell result table indexed by canonical cell id (or with a
        ``cell_id`` column)
    prefix : str
        Prefix for the new obs columns
    modality : str, optional
        Identifier convention of ``adata.obs_names``; used to translate them
        into the canonical namespace before matching

    Returns
    -------
    AnnData
        The same object, for chaining

    Raises
    ------
    ValueError
        If a cell id appears more than once in ``cell_labels`` (for example
        a combined table of several samples)
    """
    labels = cell_labels
    if "cell_id" in labels.columns:
        labels = labels.set_index("cell_id")
    duplicated = labels.index[labels.index.duplicated()].unique()
    if len(duplicated) > 0:
        raise ValueError(
            f"Labels contain {len(duplicated)} duplicate cell ids "
            f"(e.g. {duplicated[0]}); keep the rows of a single sample"
        )

    normalizer = get_modality_config(modality)
    canonical = pd.Index(normalizer.normalize_ids(adata.obs_names))
    matched = labels.reindex(canonical)

    n_matched = int(canonical.isin(labels.index).sum())
    logger.info(
        "Matched %d of %d AnnData cells to consensus labels", n_matched, adata.n_obs
    )

    adata.obs[f"{prefix}label"] = pd.Categorical(
        matched["label"].fillna("unclassified").to_numpy(),
        categories=["singlet", "doublet", "unclassified"],
    )
    adata.obs[f"{prefix}total_vote"] = matched["total_vote"].astype("Int64").array
    if "cluster_label" in matched.columns:
        adata.obs[f"{prefix}cluster_label"] = pd.Categorical(
            matched["cluster_label"].to_numpy()
        )

    return adata


def write_labels_to_h5ad(
    input_path: PathLike,
    cell_labels: pd.DataFrame,
    output_path: PathLike,
    prefix: str = "doublet_",
    modality: Optional[str] = None,
) -> Path:
    """Load an ``.h5ad``, annotate it with consensus labels and write it out.

    Parameters
    ----------
    input_path : PathLike
        Source ``.h5ad`` file
    cell_labels : pd.DataFrame
        Per-cell result table
    output_path : PathLike
        Destination ``.h5ad`` file
    prefix : str
        Prefix for the new obs columns
    modality : str, optional
        Identifier convention of the AnnData ``obs_names``

    Returns
    -------
    Path
        The output path
    """
    import anndata as ad

    adata = ad.read_h5ad(input_path)
    annotate_adata(adata, cell_labels, prefix=prefix, modality=modality)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    adata.write_h5ad(output_path)
    logger.info("Wrote annotated AnnData to %s", output_path)
    return output_path
