"""Pytest configuration and shared fixtures for doublet-consensus tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_mock_sources,
    create_mock_store,
    write_mock_config,
)


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def mock_sources() -> dict:
    """Source tables with one doublet cluster ("3") and one missing cell."""
    return create_mock_sources()


@pytest.fixture
def mock_store(mock_sources):
    """ObservationStore filled from mock_sources."""
    return create_mock_store("sample_A", sources=mock_sources)


@pytest.fixture
def random_cell_votes() -> pd.DataFrame:
    """Randomized joined cells with votes, for invariant checks."""
    from doublet_consensus.core.consensus import compute_cell_votes

    rng = np.random.default_rng(7)
    n_cells = 300
    joined = pd.DataFrame(
        {
            "cluster_id": rng.choice(["0", "1", "2", "3", "4"], n_cells),
            "annotation_score": rng.choice([0.1, 0.25, 0.5, 0.75, 0.9, np.nan], n_cells),
            "det_a": rng.random(n_cells) < 0.15,
            "det_b": rng.random(n_cells) < 0.25,
            "det_c": rng.random(n_cells) < 0.1,
        },
        index=pd.Index([f"cell_{i}" for i in range(n_cells)], name="cell_id"),
    )
    return compute_cell_votes(joined, ["det_a", "det_b", "det_c"])


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def consensus_config_path(tmp_path) -> Path:
    """Consensus YAML config with one sample and its source files."""
    return write_mock_config(tmp_path / "project", sample_ids=["sample_A"])


@pytest.fixture
def multi_sample_config_path(tmp_path) -> Path:
    """Consensus YAML config with two samples."""
    return write_mock_config(tmp_path / "project", sample_ids=["sample_A", "sample_B"])
