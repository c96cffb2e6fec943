"""Test fixtures for doublet-consensus.

Provides mock data generators and test utilities.
"""

from .mock_observations import (
    DEFAULT_DETECTORS,
    make_cell_ids,
    create_mock_sources,
    create_mock_store,
    write_mock_sources,
    write_mock_config,
    create_mock_adata,
)

__all__ = [
    "DEFAULT_DETECTORS",
    "make_cell_ids",
    "create_mock_sources",
    "create_mock_store",
    "write_mock_sources",
    "write_mock_config",
    "create_mock_adata",
]
