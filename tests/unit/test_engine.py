"""Unit tests for the consensus engine."""

import logging

import pytest
import pandas as pd

from doublet_consensus.core.consensus import (
    MISSING_CELL,
    ConfigurationError,
    ConsensusConfig,
    ConsensusEngine,
    ConsensusResult,
    DoubletLabel,
    JoinMismatch,
    MultiSampleResult,
    ObservationStore,
    ThresholdConfig,
)
from tests.fixtures import create_mock_sources, create_mock_store


def _engine(**thresholds) -> ConsensusEngine:
    return ConsensusEngine(ConsensusConfig(thresholds=ThresholdConfig(**thresholds)))


class TestConsensusEngine:
    """Tests for single-sample execution."""

    def test_doublet_cluster_detected(self, mock_store):
        """Test the mock doublet cluster is labeled doublet as a whole."""
        result = _engine().execute(mock_store)

        assert isinstance(result, ConsensusResult)
        assert result.sample_id == "sample_A"
        assert result.clusters.n_doublet_clusters == 1
        assert result.clusters.get("3").is_doublet

        labels = result.cell_labels
        cluster_3 = labels[labels["cluster_id"] == "3"]
        assert (cluster_3["label"] == "doublet").all()
        assert set(cluster_3["decision"]) == {"cluster"}

    def test_label_counts(self, mock_store):
        """Test singlet / doublet / unclassified counts."""
        result = _engine().execute(mock_store)
        assert result.n_cells == 200
        assert result.n_joined == 199
        assert result.label_counts() == {"singlet": 149, "doublet": 50, "unclassified": 1}

    def test_global_baseline(self, mock_store):
        """Test the baseline is computed over joined cells only."""
        result = _engine().execute(mock_store)
        assert result.clusters.n_joined_cells == 199
        assert result.clusters.n_candidates == 40
        assert result.clusters.global_candidate_percent == pytest.approx(100 * 40 / 199)

    def test_cell_absent_from_detector_unclassified(self, mock_store):
        """Test a cell missing from one detector is unclassified."""
        result = _engine().execute(mock_store)
        cell = result.cell_labels.loc["CELL00049-1"]
        assert cell["label"] == str(DoubletLabel.UNCLASSIFIED)
        assert cell["decision"] == "not_joined"
        assert cell["cluster_id"] == "0"

        missing = [c for c in result.conditions if c.code == MISSING_CELL]
        assert len(missing) == 1
        assert missing[0].count == 1

    def test_cell_votes_without_doublet_cluster(self, mock_store):
        """Test doublet cells are still caught by votes when no cluster qualifies."""
        result = _engine(fold_change_threshold=5.0).execute(mock_store)
        assert result.clusters.n_doublet_clusters == 0
        assert result.n_doublet == 40
        doublets = result.cell_labels[result.cell_labels["label"] == "doublet"]
        assert set(doublets["decision"]) == {"cell_vote"}
        assert (doublets["total_vote"] >= 3).all()

    def test_monotone_in_thresholds(self, mock_store):
        """Test stricter thresholds never add doublets."""
        loose = _engine(fold_change_threshold=2.0, final_vote_threshold=3).execute(mock_store)
        strict = _engine(fold_change_threshold=5.0, final_vote_threshold=5).execute(mock_store)
        loose_doublets = set(loose.cell_labels.index[loose.cell_labels["label"] == "doublet"])
        strict_doublets = set(strict.cell_labels.index[strict.cell_labels["label"] == "doublet"])
        assert strict_doublets <= loose_doublets

    def test_idempotent(self, mock_sources):
        """Test identical inputs give identical outputs."""
        first = _engine().execute(create_mock_store(sources=mock_sources))
        second = _engine().execute(create_mock_store(sources=mock_sources))
        pd.testing.assert_frame_equal(first.cell_labels, second.cell_labels)
        assert first.clusters.summaries == second.clusters.summaries

    def test_store_not_modified(self, mock_store):
        """Test running twice on one store gives the same result."""
        engine = _engine()
        first = engine.execute(mock_store)
        second = engine.execute(mock_store)
        pd.testing.assert_frame_equal(first.cell_labels, second.cell_labels)

    def test_invalid_thresholds(self):
        """Test invalid thresholds are rejected when the engine is built."""
        with pytest.raises(ConfigurationError) as exc_info:
            _engine(candidate_threshold=0, fold_change_threshold=1.0)
        assert len(exc_info.value.errors) == 2

    def test_join_mismatch_propagates(self):
        """Test fatal join errors reach the caller."""
        store = ObservationStore("bad")
        store.add_clusters(pd.Series(["0", "1"], index=["a", "b"]))
        store.add_detector("det", pd.Series(["doublet"], index=["z"]))
        store.add_annotation(pd.Series([0.5, 0.5], index=["a", "b"]))
        with pytest.raises(JoinMismatch):
            _engine().execute(store)

    def test_to_dict(self, mock_store):
        """Test dictionary conversion."""
        data = _engine().execute(mock_store).to_dict()
        assert data["label_counts"]["doublet"] == 50
        assert data["thresholds"]["fold_change_threshold"] == 2.5
        assert data["clusters"]["n_doublet_clusters"] == 1
        assert data["conditions"][0]["code"] == MISSING_CELL


class TestExecuteMulti:
    """Tests for multi-sample execution."""

    def _stores(self):
        return {
            "sample_A": create_mock_store("sample_A"),
            "sample_B": create_mock_store(
                "sample_B", sources=create_mock_sources(doublet_cluster="1", n_missing=0)
            ),
        }

    def test_sequential(self):
        """Test samples run independently and keep input order."""
        result = _engine().execute_multi(self._stores(), n_workers=1)
        assert isinstance(result, MultiSampleResult)
        assert result.samples_processed == ["sample_A", "sample_B"]
        assert result.get_result("sample_A").clusters.get("3").is_doublet
        assert result.get_result("sample_B").clusters.get("1").is_doublet
        assert result.get_result("sample_B").n_unclassified == 0
        assert result.n_total_cells == 400
        assert result.n_total_doublets == 100

    def test_parallel_matches_sequential(self):
        """Test parallel execution gives the same labels."""
        sequential = _engine().execute_multi(self._stores(), n_workers=1)
        parallel = _engine().execute_multi(self._stores(), n_workers=2)
        assert parallel.samples_processed == sequential.samples_processed
        for sample_id in sequential.samples_processed:
            pd.testing.assert_frame_equal(
                parallel.get_result(sample_id).cell_labels,
                sequential.get_result(sample_id).cell_labels,
            )

    def test_parallel_worker_logs_reach_engine_logger(self):
        """Test per-sample log lines from workers are re-emitted on the engine logger."""
        messages = []

        class ListHandler(logging.Handler):
            def emit(self, record):
                messages.append(record.getMessage())

        run_logger = logging.getLogger("doublet_consensus.tests.parallel_run")
        run_logger.setLevel(logging.INFO)
        run_logger.propagate = False
        handler = ListHandler()
        run_logger.addHandler(handler)
        try:
            engine = ConsensusEngine(ConsensusConfig(), logger=run_logger)
            engine.execute_multi(self._stores(), n_workers=2)
        finally:
            run_logger.removeHandler(handler)

        assert any("Consensus doublet calling: sample_A" in m for m in messages)
        assert any("Consensus doublet calling: sample_B" in m for m in messages)
        assert any(m.startswith("Labels: 50 doublet") for m in messages)

    def test_combined_tables(self):
        """Test combined per-cell and per-cluster tables."""
        result = _engine().execute_multi(self._stores())
        cells = result.combined_cell_labels()
        assert cells.columns[0] == "sample_id"
        assert "cell_id" in cells.columns
        assert len(cells) == 400
        clusters = result.combined_cluster_summary()
        assert len(clusters) == 8
        assert set(clusters["sample_id"]) == {"sample_A", "sample_B"}

    def test_fatal_error_aborts_run(self):
        """Test one broken sample aborts the whole run."""
        stores = self._stores()
        broken = ObservationStore("broken")
        broken.add_clusters(pd.Series(["0"], index=["a"]))
        stores["broken"] = broken
        with pytest.raises(ConfigurationError):
            _engine().execute_multi(stores)

    def test_empty(self):
        """Test no stores gives an empty result."""
        result = _engine().execute_multi({})
        assert result.samples_processed == []

    def test_from_config(self, multi_sample_config_path):
        """Test loading every sample from a YAML config."""
        config = ConsensusConfig.from_yaml(multi_sample_config_path)
        result = ConsensusEngine(config).execute_multi()
        assert result.samples_processed == ["sample_A", "sample_B"]
        assert result.get_result("sample_A").label_counts() == {
            "singlet": 149, "doublet": 50, "unclassified": 1,
        }

    def test_invalid_config_paths(self, consensus_config_path):
        """Test missing source files are reported before running."""
        config = ConsensusConfig.from_yaml(consensus_config_path)
        config.samples["sample_A"].clusters.path.unlink()
        with pytest.raises(ConfigurationError, match="not found"):
            ConsensusEngine(config).execute_multi()
