"""I/O utilities for doublet-consensus.

Provides run logging, tabular source loading and AnnData read/write helpers.
"""

from .logging import (
    append_run_record,
    build_run_record,
    close_run_log,
    format_run_header,
    open_run_log,
    stamp_log_path,
)
from .csv import (
    ensure_output_dir,
    infer_separator,
    load_cell_ids,
    load_cell_table,
    resolve_path,
    write_dataframe,
)
from .h5ad import (
    annotate_adata,
    read_obs_table,
    write_labels_to_h5ad,
)

__all__ = [
    # Logging
    "append_run_record",
    "build_run_record",
    "close_run_log",
    "format_run_header",
    "open_run_log",
    "stamp_log_path",
    # Tabular I/O
    "ensure_output_dir",
    "infer_separator",
    "load_cell_ids",
    "load_cell_table",
    "resolve_path",
    "write_dataframe",
    # AnnData
    "annotate_adata",
    "read_obs_table",
    "write_labels_to_h5ad",
]
