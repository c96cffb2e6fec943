"""Error taxonomy for the consensus engine.

Provides:
- ConsensusError: Base class for all fatal engine errors
- ConfigurationError: Bad thresholds, unknown modality, missing sources
- JoinMismatch: A required source shares no identifiers with the rest
- InvalidObservation: Malformed per-cell observations (duplicates, bad calls)
- DataCondition: Non-fatal conditions absorbed into the label model

Fatal errors propagate to the caller and no partial results are produced.
Non-fatal conditions (EmptyCluster, UndefinedFoldChange, MissingCell) are
recorded on the result as DataCondition records.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


EMPTY_CLUSTER = "EmptyCluster"
UNDEFINED_FOLD_CHANGE = "UndefinedFoldChange"
MISSING_CELL = "MissingCell"


class ConsensusError(Exception):
    """Base class for fatal consensus errors."""


class ConfigurationError(ConsensusError, ValueError):
    """Invalid configuration (thresholds, sources, modalities).

    Parameters
    ----------
    message : str
        Summary message
    errors : List[str], optional
        Individual validation errors
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = message + ":\n  - " + "\n  - ".join(self.errors)
        super().__init__(message)


class JoinMismatch(ConsensusError):
    """A required source has zero identifiers in common with the others.

    Usually means the identifier convention (modality) of a source is wrong
    or an upstream step was run on a different sample.

    Parameters
    ----------
    source : str
        Name of the offending source
    n_source_ids : int
        Number of identifiers in the offending source
    n_other_ids : int
        Number of identifiers it was compared against
    examples : List[str], optional
        A few identifiers from each side, for the error message
    """

    def __init__(
        self,
        source: str,
        n_source_ids: int,
        n_other_ids: int,
        examples: Optional[List[str]] = None,
    ):
        self.source = source
        self.n_source_ids = n_source_ids
        self.n_other_ids = n_other_ids
        self.examples = list(examples or [])
        message = (
            f"Source '{source}' shares no cell identifiers with the other sources "
            f"({n_source_ids} ids vs {n_other_ids} ids)"
        )
        if self.examples:
            message += f"; e.g. {', '.join(self.examples)}"
        super().__init__(message)


class InvalidObservation(ConsensusError, ValueError):
    """A source table contains malformed per-cell observations."""


class DuplicateCellId(InvalidObservation):
    """Canonical cell identifiers are not unique within a source."""

    def __init__(self, source: str, duplicates: List[str]):
        self.source = source
        self.duplicates = list(duplicates)
        shown = ", ".join(self.duplicates[:5])
        super().__init__(
            f"Source '{source}' has {len(self.duplicates)} duplicated cell ids "
            f"after normalization (e.g. {shown})"
        )


class InvalidDetectorCall(InvalidObservation):
    """A detector call could not be read as doublet or singlet."""

    def __init__(self, detector: str, values: List[Any]):
        self.detector = detector
        self.values = list(values)
        super().__init__(
            f"Detector '{detector}' has unrecognised calls: {self.values[:5]}. "
            "Expected doublet/singlet, true/false or 1/0."
        )


@dataclass
class DataCondition:
    """A non-fatal data condition observed during a run.

    Attributes
    ----------
    code : str
        Condition code (EmptyCluster, UndefinedFoldChange, MissingCell)
    message : str
        Human-readable description
    cluster_id : str, optional
        Cluster involved (if applicable)
    count : int, optional
        Number of cells involved (if applicable)
    metadata : Dict
        Additional metadata
    """

    code: str
    message: str
    cluster_id: Optional[str] = None
    count: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "cluster_id": self.cluster_id,
            "count": self.count,
            **self.metadata,
        }
