"""Tabular I/O utilities for doublet-consensus.

Provides functions for loading per-cell source tables (cluster assignments,
annotation scores, detector calls) from CSV/TSV files or AnnData ``obs``,
and for writing result tables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TAB_SUFFIXES = (".tsv", ".txt", ".tab")
H5AD_SUFFIXES = (".h5ad",)


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it.

    Parameters
    ----------
    path : PathLike
        Directory path to create.

    Returns
    -------
    Path
        The created/existing directory path.
    """
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def resolve_path(value: PathLike, base: Optional[PathLike]) -> Path:
    """Resolve a path relative to a base directory."""
    candidate = Path(value)
    if base is not None and not candidate.is_absolute():
        candidate = (Path(base) / candidate).resolve()
    return candidate


def _table_suffix(path: Path) -> str:
    """Return the data suffix, ignoring a trailing compression suffix."""
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] in (".gz", ".bz2", ".zip", ".xz"):
        suffixes = suffixes[:-1]
    return suffixes[-1] if suffixes else ""


def infer_separator(path: PathLike) -> str:
    """Infer the column separator from the file suffix (tab or comma)."""
    return "\t" if _table_suffix(Path(path)) in TAB_SUFFIXES else ","


def _validate_cell_table(
    df: pd.DataFrame,
    path: PathLike,
    required_columns: List[str],
) -> None:
    """Validate a cell table has the expected structure.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate.
    path : PathLike
        Path for error messages.
    required_columns : List[str]
        Columns that must be present.

    Raises
    ------
    ValueError
        If table is empty or missing expected columns.
    """
    if df.empty:
        raise ValueError(f"Cell table {path} is empty")
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise ValueError(
            f"Cell table {path} missing columns: {missing}. "
            f"Available: {list(df.columns)}"
        )


def load_cell_table(
    path: PathLike,
    value_column: str,
    id_column: Optional[str] = None,
    sep: Optional[str] = None,
) -> pd.DataFrame:
    """Read a per-cell table and index it by the raw cell identifier.

    Parameters
    ----------
    path : PathLike
        Path to a CSV/TSV file or an ``.h5ad`` file (its ``obs`` is read).
    value_column : str
        Column holding the observation (cluster, score or detector call).
    id_column : str, optional
        Column holding the cell identifier. Defaults to the first column for
        delimited files and to ``obs_names`` for ``.h5ad`` files.
    sep : str, optional
        Column separator. Inferred from the suffix when omitted.

    Returns
    -------
    pd.DataFrame
        Table indexed by raw identifier (string), with ``value_column``.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty or missing columns.
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Cell table not found: {table_path}")

    if _table_suffix(table_path) in H5AD_SUFFIXES:
        from .h5ad import read_obs_table

        df = read_obs_table(table_path)
        if id_column is None:
            _validate_cell_table(df, table_path, [value_column])
            df.index = df.index.astype(str)
            df.index.name = "cell_id"
            return df[[value_column]]
    else:
        df = pd.read_csv(table_path, sep=sep or infer_separator(table_path))
        if id_column is None:
            id_column = str(df.columns[0])

    _validate_cell_table(df, table_path, [id_column, value_column])

    table = df[[id_column, value_column]].copy()
    table[id_column] = table[id_column].astype(str)
    table = table.set_index(id_column)
    table.index.name = "cell_id"
    logger.debug("Loaded %d rows from %s", len(table), table_path)
    return table


def load_cell_ids(
    path: PathLike,
    id_column: Optional[str] = None,
    sep: Optional[str] = None,
) -> List[str]:
    """Read a list of cell identifiers (e.g. the full barcode list of a sample).

    Files with a single column and no header (like Cell Ranger's
    ``barcodes.tsv``) are supported when ``id_column`` is omitted.
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Cell id list not found: {table_path}")

    if _table_suffix(table_path) in H5AD_SUFFIXES:
        from .h5ad import read_obs_table

        obs = read_obs_table(table_path)
        if id_column is None:
            return obs.index.astype(str).tolist()
        _validate_cell_table(obs, table_path, [id_column])
        return obs[id_column].astype(str).tolist()

    separator = sep or infer_separator(table_path)
    if id_column is None:
        df = pd.read_csv(table_path, sep=separator, header=None)
        return df.iloc[:, 0].astype(str).tolist()

    df = pd.read_csv(table_path, sep=separator)
    _validate_cell_table(df, table_path, [id_column])
    return df[id_column].astype(str).tolist()


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path. A tab separator is used for .tsv/.txt paths.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index, sep=infer_separator(output_path))
    return output_path
