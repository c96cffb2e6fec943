"""Command-line interface for doublet-consensus.

Provides CLI commands for running consensus doublet calling.

Example Usage
-------------
    # From command line:
    doublet-consensus --help
    doublet-consensus validate --config consensus.yaml
    doublet-consensus run --config consensus.yaml --out out/consensus/
    doublet-consensus annotate --input sample.h5ad --labels out/consensus/cell_labels.csv --out labeled.h5ad
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
