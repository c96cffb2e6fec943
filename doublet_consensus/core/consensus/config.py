"""Configuration classes for the consensus engine.

Provides:
- ThresholdConfig: Candidate, fold-change and final vote thresholds
- SourceConfig: One per-cell input table (path, columns, modality)
- SampleConfig: Inputs of one sample (clusters, annotation, detectors)
- ConsensusConfig: Overall run configuration
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ...config.modality import (
    ModalityConfig,
    get_modality_config,
    register_modality_config,
)
from ...io.csv import resolve_path


@dataclass
class ThresholdConfig:
    """Decision thresholds.

    Attributes
    ----------
    candidate_threshold : int
        Minimum total vote for a cell to count as a doublet candidate
    fold_change_threshold : float
        Minimum cluster fold change over the global candidate percent for the
        whole cluster to be labeled doublet
    final_vote_threshold : int
        Minimum total vote for a cell outside a doublet cluster to be
        labeled doublet
    """

    candidate_threshold: int = 2
    fold_change_threshold: float = 2.5
    final_vote_threshold: int = 3

    def validate(self) -> Tuple[bool, List[str]]:
        """Check threshold values.

        Returns
        -------
        Tuple[bool, List[str]]
            (is_valid, list of error messages)
        """
        errors = []

        if not _is_int(self.candidate_threshold) or self.candidate_threshold < 1:
            errors.append(
                f"candidate_threshold must be an integer >= 1 "
                f"(got {self.candidate_threshold!r})"
            )
        if not _is_number(self.fold_change_threshold) or not self.fold_change_threshold > 1:
            errors.append(
                f"fold_change_threshold must be a number > 1 "
                f"(got {self.fold_change_threshold!r})"
            )
        if not _is_int(self.final_vote_threshold):
            errors.append(
                f"final_vote_threshold must be an integer "
                f"(got {self.final_vote_threshold!r})"
            )
        elif (
            _is_int(self.candidate_threshold)
            and self.final_vote_threshold <= self.candidate_threshold
        ):
            errors.append(
                f"final_vote_threshold ({self.final_vote_threshold}) must be greater "
                f"than candidate_threshold ({self.candidate_threshold})"
            )

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "candidate_threshold": self.candidate_threshold,
            "fold_change_threshold": self.fold_change_threshold,
            "final_vote_threshold": self.final_vote_threshold,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ThresholdConfig":
        """Create from dictionary, falling back to defaults for missing keys."""
        data = data or {}
        defaults = cls()
        return cls(
            candidate_threshold=data.get("candidate_threshold", defaults.candidate_threshold),
            fold_change_threshold=data.get(
                "fold_change_threshold", defaults.fold_change_threshold
            ),
            final_vote_threshold=data.get(
                "final_vote_threshold", defaults.final_vote_threshold
            ),
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class SourceConfig:
    """One per-cell input table.

    Attributes
    ----------
    path : Path
        CSV/TSV or .h5ad file
    value_column : str
        Column holding the observation
    id_column : str, optional
        Column holding the cell id (first column / obs_names when omitted)
    modality : str
        Identifier convention of the source
    sep : str, optional
        Column separator (inferred from the suffix when omitted)
    """

    path: Path
    value_column: str
    id_column: Optional[str] = None
    modality: str = "rna"
    sep: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": str(self.path),
            "value_column": self.value_column,
            "id_column": self.id_column,
            "modality": self.modality,
            "sep": self.sep,
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        base_dir: Optional[Path] = None,
        default_value_column: Optional[str] = None,
    ) -> "SourceConfig":
        """Create from a dictionary or a bare path string.

        Parameters
        ----------
        data : dict or str
            Source definition
        base_dir : Path, optional
            Directory relative paths are resolved against
        default_value_column : str, optional
            Value column used when the definition does not name one
        """
        if isinstance(data, (str, Path)):
            data = {"path": data}
        if "path" not in data:
            raise ValueError(f"Source definition requires a 'path': {data}")

        value_column = data.get("value_column", default_value_column)
        if not value_column:
            raise ValueError(f"Source definition requires a 'value_column': {data}")

        return cls(
            path=resolve_path(data["path"], base_dir),
            value_column=str(value_column),
            id_column=data.get("id_column"),
            modality=data.get("modality", "rna"),
            sep=data.get("sep"),
        )


@dataclass
class SampleConfig:
    """Inputs of one sample.

    Attributes
    ----------
    sample_id : str
        Sample identifier
    clusters : SourceConfig
        Cluster assignment per cell
    detectors : Dict[str, SourceConfig]
        Detector calls per cell, keyed by detector name
    annotation : SourceConfig
        Annotation confidence per cell
    universe : SourceConfig, optional
        Full list of cell ids of the sample (widens the cell universe)
    """

    sample_id: str
    clusters: SourceConfig
    detectors: Dict[str, SourceConfig]
    annotation: SourceConfig
    universe: Optional[SourceConfig] = None

    def sources(self) -> Dict[str, SourceConfig]:
        """All sources keyed by role (detectors keyed by name)."""
        sources = {"clusters": self.clusters, "annotation": self.annotation}
        sources.update(self.detectors)
        if self.universe is not None:
            sources["universe"] = self.universe
        return sources

    def validate(self, check_paths: bool = True) -> Tuple[bool, List[str]]:
        """Check the sample has detectors, known modalities and existing files.

        Returns
        -------
        Tuple[bool, List[str]]
            (is_valid, list of error messages)
        """
        errors = []
        if not self.detectors:
            errors.append(f"Sample '{self.sample_id}': at least one detector is required")

        for role, source in self.sources().items():
            try:
                get_modality_config(source.modality)
            except ValueError:
                errors.append(
                    f"Sample '{self.sample_id}': source '{role}' has unknown "
                    f"modality '{source.modality}'"
                )
            if check_paths and not Path(source.path).exists():
                errors.append(
                    f"Sample '{self.sample_id}': source '{role}' not found: {source.path}"
                )

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "clusters": self.clusters.to_dict(),
            "annotation": self.annotation.to_dict(),
            "detectors": {name: src.to_dict() for name, src in self.detectors.items()},
        }
        if self.universe is not None:
            data["universe"] = self.universe.to_dict()
        return data

    @classmethod
    def from_dict(
        cls,
        sample_id: str,
        data: Dict[str, Any],
        base_dir: Optional[Path] = None,
    ) -> "SampleConfig":
        """Create from dictionary.

        Raises
        ------
        ValueError
            If clusters, annotation or detectors are missing
        """
        missing = [key for key in ("clusters", "annotation", "detectors") if key not in data]
        if missing:
            raise ValueError(f"Sample '{sample_id}' is missing required keys: {missing}")

        universe = data.get("universe")
        return cls(
            sample_id=str(sample_id),
            clusters=SourceConfig.from_dict(
                data["clusters"], base_dir, default_value_column="cluster_id"
            ),
            annotation=SourceConfig.from_dict(
                data["annotation"], base_dir, default_value_column="annotation_score"
            ),
            detectors={
                str(name): SourceConfig.from_dict(src, base_dir, default_value_column=str(name))
                for name, src in (data["detectors"] or {}).items()
            },
            universe=(
                SourceConfig.from_dict(universe, base_dir, default_value_column="cell_id")
                if universe is not None
                else None
            ),
        )


@dataclass
class ConsensusConfig:
    """Overall consensus run configuration.

    Attributes
    ----------
    thresholds : ThresholdConfig
        Decision thresholds
    samples : Dict[str, SampleConfig]
        Per-sample inputs, in file order
    modalities : List[ModalityConfig]
        Extra identifier conventions registered before loading sources
    n_workers : int
        Number of parallel workers for multi-sample runs
    output_dir : Path, optional
        Default output directory for exports

    Example
    -------
    >>> config = ConsensusConfig.from_yaml("consensus.yaml")
    >>> valid, errors = config.validate(check_paths=True)
    """

    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    samples: Dict[str, SampleConfig] = field(default_factory=dict)
    modalities: List[ModalityConfig] = field(default_factory=list)
    n_workers: int = 1
    output_dir: Optional[Path] = None

    @classmethod
    def default(cls) -> "ConsensusConfig":
        """Create default configuration (default thresholds, no samples)."""
        return cls()

    @classmethod
    def from_yaml(cls, path: Path) -> "ConsensusConfig":
        """Load configuration from YAML file.

        Relative paths in the file are resolved against its directory.

        Parameters
        ----------
        path : Path
            Path to YAML configuration file

        Returns
        -------
        ConsensusConfig
            Loaded configuration
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "consensus" in data:
            data = data["consensus"] or {}

        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        base_dir: Optional[Path] = None,
    ) -> "ConsensusConfig":
        """Create from dictionary."""
        samples = {
            str(sample_id): SampleConfig.from_dict(sample_id, sample_data or {}, base_dir)
            for sample_id, sample_data in (data.get("samples") or {}).items()
        }
        output_dir = data.get("output_dir")

        return cls(
            thresholds=ThresholdConfig.from_dict(data.get("thresholds")),
            samples=samples,
            modalities=[ModalityConfig.from_dict(m) for m in data.get("modalities") or []],
            n_workers=int(data.get("n_workers", 1)),
            output_dir=resolve_path(output_dir, base_dir) if output_dir else None,
        )

    def register_modalities(self) -> None:
        """Register the identifier conventions declared in this config."""
        for modality in self.modalities:
            register_modality_config(modality)

    def validate(self, check_paths: bool = False) -> Tuple[bool, List[str]]:
        """Validate thresholds, workers and every sample.

        Parameters
        ----------
        check_paths : bool
            Also check that every source file exists

        Returns
        -------
        Tuple[bool, List[str]]
            (is_valid, list of error messages)
        """
        self.register_modalities()
        _, errors = self.thresholds.validate()

        if not _is_int(self.n_workers) or self.n_workers < 1:
            errors.append(f"n_workers must be an integer >= 1 (got {self.n_workers!r})")

        for sample in self.samples.values():
            _, sample_errors = sample.validate(check_paths=check_paths)
            errors.extend(sample_errors)

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "thresholds": self.thresholds.to_dict(),
            "n_workers": self.n_workers,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "modalities": [m.to_dict() for m in self.modalities],
            "samples": {sid: s.to_dict() for sid, s in self.samples.items()},
        }
