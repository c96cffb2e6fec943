"""Unit tests for consensus configuration."""

from pathlib import Path

import pytest

from doublet_consensus.config import normalize_id
from doublet_consensus.core.consensus import (
    ConsensusConfig,
    SampleConfig,
    SourceConfig,
    ThresholdConfig,
)


class TestThresholdConfig:
    """Tests for ThresholdConfig dataclass."""

    def test_default_values(self):
        """Test default thresholds."""
        config = ThresholdConfig()
        assert config.candidate_threshold == 2
        assert config.fold_change_threshold == 2.5
        assert config.final_vote_threshold == 3
        assert config.validate() == (True, [])

    @pytest.mark.parametrize(
        "kwargs,fragment",
        [
            ({"candidate_threshold": 0}, "candidate_threshold"),
            ({"candidate_threshold": 1.5}, "candidate_threshold"),
            ({"fold_change_threshold": 1.0}, "fold_change_threshold"),
            ({"fold_change_threshold": "3"}, "fold_change_threshold"),
            ({"final_vote_threshold": 2}, "greater than candidate_threshold"),
            ({"final_vote_threshold": 2.5}, "final_vote_threshold"),
        ],
    )
    def test_invalid_values(self, kwargs, fragment):
        """Test each invalid threshold is reported."""
        valid, errors = ThresholdConfig(**kwargs).validate()
        assert not valid
        assert any(fragment in e for e in errors)

    def test_from_dict_partial(self):
        """Test missing keys fall back to defaults."""
        config = ThresholdConfig.from_dict({"fold_change_threshold": 3})
        assert config.fold_change_threshold == 3
        assert config.candidate_threshold == 2
        assert ThresholdConfig.from_dict(None) == ThresholdConfig()


class TestSourceConfig:
    """Tests for SourceConfig."""

    def test_from_bare_path(self, tmp_path):
        """Test a bare path string with a default value column."""
        source = SourceConfig.from_dict("calls.csv", tmp_path, default_value_column="amulet")
        assert source.path == (tmp_path / "calls.csv").resolve()
        assert source.value_column == "amulet"
        assert source.modality == "rna"

    def test_absolute_path_kept(self, tmp_path):
        """Test absolute paths are not rebased."""
        target = tmp_path / "abs.csv"
        source = SourceConfig.from_dict({"path": str(target), "value_column": "x"}, Path("/other"))
        assert source.path == target

    def test_requires_path(self):
        """Test a definition without a path is rejected."""
        with pytest.raises(ValueError, match="path"):
            SourceConfig.from_dict({"value_column": "x"})


class TestConsensusConfig:
    """Tests for ConsensusConfig."""

    def test_default(self):
        """Test default configuration."""
        config = ConsensusConfig.default()
        assert config.thresholds == ThresholdConfig()
        assert config.samples == {}
        assert config.n_workers == 1
        assert config.validate() == (True, [])

    def test_from_yaml(self, consensus_config_path):
        """Test loading the mock configuration."""
        config = ConsensusConfig.from_yaml(consensus_config_path)
        sample = config.samples["sample_A"]
        assert isinstance(sample, SampleConfig)
        assert list(sample.detectors) == ["scDblFinder", "DoubletFinder", "scrublet"]
        assert sample.clusters.path == (consensus_config_path.parent / "sample_A" / "clusters.csv").resolve()
        assert sample.annotation.value_column == "annotation_score"
        assert config.output_dir == (consensus_config_path.parent / "out").resolve()
        assert config.validate(check_paths=True) == (True, [])

    def test_from_yaml_without_top_key(self, tmp_path):
        """Test the consensus top-level key is optional."""
        path = tmp_path / "cfg.yaml"
        path.write_text(
            "thresholds:\n"
            "  fold_change_threshold: 3.0\n"
            "n_workers: 4\n"
        )
        config = ConsensusConfig.from_yaml(path)
        assert config.thresholds.fold_change_threshold == 3.0
        assert config.n_workers == 4
        assert config.output_dir is None

    def test_custom_modalities_registered(self, tmp_path):
        """Test modalities declared in the config become available."""
        path = tmp_path / "cfg.yaml"
        path.write_text(
            "consensus:\n"
            "  modalities:\n"
            "    - name: atac_lane3\n"
            "      prefix_separator: '#'\n"
            "      strip_suffix: '-1'\n"
            "      append_suffix: '-3'\n"
            "  samples:\n"
            "    s1:\n"
            "      clusters: clusters.csv\n"
            "      annotation: scores.csv\n"
            "      detectors:\n"
            "        amulet: {path: amulet.csv, modality: atac_lane3}\n"
        )
        config = ConsensusConfig.from_yaml(path)
        assert config.validate() == (True, [])
        assert normalize_id("s1#AAAC-1", "atac_lane3") == "AAAC-3"
        assert config.samples["s1"].detectors["amulet"].value_column == "amulet"

    def test_unknown_modality(self, tmp_path):
        """Test an unknown source modality is a validation error."""
        config = ConsensusConfig.from_dict({
            "samples": {
                "s1": {
                    "clusters": "c.csv",
                    "annotation": "a.csv",
                    "detectors": {"d": {"path": "d.csv", "modality": "nope"}},
                }
            }
        }, base_dir=tmp_path)
        valid, errors = config.validate()
        assert not valid
        assert any("unknown modality 'nope'" in e for e in errors)

    def test_missing_paths(self, tmp_path):
        """Test missing files are reported with check_paths."""
        config = ConsensusConfig.from_dict({
            "samples": {
                "s1": {"clusters": "c.csv", "annotation": "a.csv", "detectors": {"d": "d.csv"}}
            }
        }, base_dir=tmp_path)
        assert config.validate(check_paths=False)[0]
        valid, errors = config.validate(check_paths=True)
        assert not valid
        assert len(errors) == 3

    def test_sample_requires_detectors(self, tmp_path):
        """Test samples need at least one detector."""
        config = ConsensusConfig.from_dict({
            "samples": {"s1": {"clusters": "c.csv", "annotation": "a.csv", "detectors": {}}}
        }, base_dir=tmp_path)
        valid, errors = config.validate()
        assert not valid
        assert "at least one detector" in errors[0]

    def test_sample_missing_keys(self):
        """Test samples without required sources are rejected on load."""
        with pytest.raises(ValueError, match="annotation"):
            ConsensusConfig.from_dict({"samples": {"s1": {"clusters": "c.csv", "detectors": {}}}})

    def test_invalid_workers(self):
        """Test n_workers must be positive."""
        config = ConsensusConfig(n_workers=0)
        valid, errors = config.validate()
        assert not valid
        assert "n_workers" in errors[0]

    def test_to_dict(self, consensus_config_path):
        """Test dictionary conversion."""
        data = ConsensusConfig.from_yaml(consensus_config_path).to_dict()
        assert data["thresholds"]["final_vote_threshold"] == 3
        assert set(data["samples"]["sample_A"]["detectors"]) == {
            "scDblFinder", "DoubletFinder", "scrublet",
        }
