"""Observation store: per-cell observations from heterogeneous sources.

Sources are registered one at a time (cluster assignment, detector calls,
annotation confidence), each with the identifier convention (modality) it
was produced under. Identifiers are translated into the canonical namespace
on registration, so the join is a plain index intersection.

Join semantics:
- Inner join of the cluster assignment and every detector
- Left merge of the annotation score onto the joined cells (missing -> NaN)
- Row order follows the cluster-assignment source
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from ...config.modality import get_modality_config
from ...io.csv import load_cell_ids, load_cell_table
from .config import SampleConfig
from .errors import ConfigurationError, DuplicateCellId, InvalidObservation, JoinMismatch
from .votes import normalize_calls

logger = logging.getLogger(__name__)

TableLike = Union[pd.DataFrame, pd.Series]

RESERVED_COLUMNS = frozenset({
    "cell_id",
    "cluster_id",
    "annotation_score",
    "quality_vote",
    "type_vote",
    "total_vote",
    "cluster_label",
    "label",
    "decision",
    "sample_id",
})


class ObservationStore:
    """Holds per-cell observations of one sample and joins them.

    Parameters
    ----------
    sample_id : str
        Sample identifier (used in log and error messages)

    Example
    -------
    >>> store = ObservationStore("sample_A")
    >>> store.add_clusters(clusters_df, cluster_column="seurat_clusters", id_column="barcode")
    >>> store.add_detector("scDblFinder", scdbl_df, call_column="class")
    >>> store.add_annotation(azimuth_df, score_column="predicted.celltype.score")
    >>> joined = store.join()
    """

    def __init__(self, sample_id: str = ""):
        self.sample_id = sample_id
        self._clusters: Optional[pd.Series] = None
        self._annotation: Optional[pd.Series] = None
        self._detectors: Dict[str, pd.Series] = {}
        self._extra_universe: List[str] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_clusters(
        self,
        table: TableLike,
        cluster_column: str = "cluster_id",
        id_column: Optional[str] = None,
        modality: Optional[str] = "rna",
    ) -> "ObservationStore":
        """Register the cluster assignment source.

        Cells with a missing cluster are dropped. Cluster ids are stored as
        strings.

        Parameters
        ----------
        table : pd.DataFrame or pd.Series
            Source table; ids come from ``id_column`` or the index
        cluster_column : str
            Column holding the cluster id (ignored for a Series)
        id_column : str, optional
            Column holding the cell id
        modality : str, optional
            Identifier convention of the source
        """
        values = self._extract(table, cluster_column, id_column, "clusters")
        values = values[values.notna()]
        values = self._canonicalize(values, "clusters", modality)
        self._clusters = _cluster_strings(values).rename("cluster_id")
        logger.debug(
            "[%s] Registered %d cluster assignments (%d clusters)",
            self.sample_id, len(self._clusters), self._clusters.nunique(),
        )
        return self

    def add_detector(
        self,
        name: str,
        table: TableLike,
        call_column: Optional[str] = None,
        id_column: Optional[str] = None,
        modality: Optional[str] = "rna",
    ) -> "ObservationStore":
        """Register one detector's per-cell calls.

        Calls are normalized to booleans (doublet = True). Cells with a
        missing call are outside this detector's universe.

        Raises
        ------
        ConfigurationError
            If the name is reserved or already registered
        InvalidDetectorCall
            If a call cannot be read as doublet or singlet
        """
        name = str(name)
        if name in RESERVED_COLUMNS:
            raise ConfigurationError(f"Detector name '{name}' is reserved")
        if name in self._detectors:
            raise ConfigurationError(f"Detector '{name}' is already registered")

        values = self._extract(table, call_column or name, id_column, name)
        calls = normalize_calls(values, detector=name)
        calls = calls[calls.notna()]
        calls = self._canonicalize(calls, name, modality)
        self._detectors[name] = calls.astype(bool).rename(name)
        logger.debug(
            "[%s] Registered detector %s: %d calls, %d doublets",
            self.sample_id, name, len(calls), int(self._detectors[name].sum()),
        )
        return self

    def add_annotation(
        self,
        table: TableLike,
        score_column: str = "annotation_score",
        id_column: Optional[str] = None,
        modality: Optional[str] = "rna",
    ) -> "ObservationStore":
        """Register the annotation confidence source.

        Raises
        ------
        InvalidObservation
            If a score is not numeric or falls outside [0, 1]
        """
        values = self._extract(table, score_column, id_column, "annotation")
        try:
            scores = pd.to_numeric(values, errors="raise").astype(float)
        except (TypeError, ValueError) as e:
            raise InvalidObservation(
                f"Annotation scores must be numeric: {e}"
            ) from e

        scores = scores[scores.notna()]
        out_of_range = scores[(scores < 0) | (scores > 1)]
        if len(out_of_range) > 0:
            raise InvalidObservation(
                f"{len(out_of_range)} annotation scores outside [0, 1] "
                f"(e.g. {out_of_range.head(3).to_dict()})"
            )

        self._annotation = self._canonicalize(scores, "annotation", modality).rename(
            "annotation_score"
        )
        logger.debug(
            "[%s] Registered %d annotation scores", self.sample_id, len(self._annotation)
        )
        return self

    def add_universe(
        self,
        cell_ids: Iterable[Any],
        modality: Optional[str] = "rna",
    ) -> "ObservationStore":
        """Widen the cell universe with an explicit id list (e.g. all barcodes)."""
        normalizer = self._normalizer(modality)
        canonical = pd.unique(np.asarray(normalizer.normalize_ids(cell_ids), dtype=object))
        self._extra_universe = list(canonical)
        logger.debug(
            "[%s] Registered universe of %d cell ids", self.sample_id, len(canonical)
        )
        return self

    @classmethod
    def from_config(cls, sample: SampleConfig) -> "ObservationStore":
        """Build a store by loading every source of a sample from disk."""
        store = cls(sample.sample_id)

        src = sample.clusters
        store.add_clusters(
            load_cell_table(src.path, src.value_column, src.id_column, src.sep),
            cluster_column=src.value_column,
            modality=src.modality,
        )
        for name, src in sample.detectors.items():
            store.add_detector(
                name,
                load_cell_table(src.path, src.value_column, src.id_column, src.sep),
                call_column=src.value_column,
                modality=src.modality,
            )
        src = sample.annotation
        store.add_annotation(
            load_cell_table(src.path, src.value_column, src.id_column, src.sep),
            score_column=src.value_column,
            modality=src.modality,
        )
        if sample.universe is not None:
            src = sample.universe
            store.add_universe(
                load_cell_ids(src.path, src.id_column, src.sep),
                modality=src.modality,
            )

        logger.info("[%s] Loaded sources: %s", sample.sample_id, store.source_counts())
        return store

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def detector_names(self) -> List[str]:
        """Registered detector names, in registration order."""
        return list(self._detectors)

    @property
    def cluster_assignments(self) -> pd.Series:
        """Cluster id per cell of the cluster-assignment source."""
        self._require_clusters()
        return self._clusters

    def universe(self) -> pd.Index:
        """All cells of the sample: cluster-assignment ids, then extra ids."""
        self._require_clusters()
        universe = self._clusters.index
        if self._extra_universe:
            extra = pd.Index(self._extra_universe)
            universe = universe.append(extra[~extra.isin(universe)])
        return pd.Index(universe, name="cell_id")

    def source_counts(self) -> Dict[str, int]:
        """Number of identifiers per registered source."""
        counts = {}
        if self._clusters is not None:
            counts["clusters"] = len(self._clusters)
        for name, calls in self._detectors.items():
            counts[name] = len(calls)
        if self._annotation is not None:
            counts["annotation"] = len(self._annotation)
        if self._extra_universe:
            counts["universe"] = len(self._extra_universe)
        return counts

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    def join(self) -> pd.DataFrame:
        """Join all sources by canonical cell id.

        Returns
        -------
        pd.DataFrame
            Indexed by ``cell_id`` in cluster-source order, with columns
            ``cluster_id``, ``annotation_score`` and one boolean column per
            detector

        Raises
        ------
        ConfigurationError
            If the cluster source, any detector or the annotation is missing
        JoinMismatch
            If a detector or the annotation shares no ids with the others
        """
        missing = []
        if self._clusters is None:
            missing.append("clusters")
        if not self._detectors:
            missing.append("at least one detector")
        if self._annotation is None:
            missing.append("annotation")
        if missing:
            raise ConfigurationError(
                f"Sample '{self.sample_id}' cannot be joined, missing sources",
                missing,
            )

        cells = self._clusters.index
        for name, calls in self._detectors.items():
            overlap = cells.isin(calls.index)
            if not overlap.any():
                raise JoinMismatch(
                    name, len(calls), len(cells), _examples(calls.index, cells)
                )
            cells = cells[overlap]

        annotated = cells.isin(self._annotation.index)
        if not annotated.any():
            raise JoinMismatch(
                "annotation",
                len(self._annotation),
                len(cells),
                _examples(self._annotation.index, cells),
            )

        joined = pd.DataFrame(index=pd.Index(cells, name="cell_id"))
        joined["cluster_id"] = self._clusters.reindex(cells).to_numpy()
        joined["annotation_score"] = self._annotation.reindex(cells).to_numpy(dtype=float)
        for name, calls in self._detectors.items():
            joined[name] = calls.reindex(cells).to_numpy(dtype=bool)

        n_unscored = int((~annotated).sum())
        logger.info(
            "[%s] Joined %d of %d cells across %d detectors (%d without annotation score)",
            self.sample_id, len(joined), len(self._clusters),
            len(self._detectors), n_unscored,
        )
        return joined

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_clusters(self) -> None:
        if self._clusters is None:
            raise ConfigurationError(
                f"Sample '{self.sample_id}' has no cluster assignment source"
            )

    @staticmethod
    def _normalizer(modality: Optional[str]):
        try:
            return get_modality_config(modality)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    @staticmethod
    def _extract(
        table: TableLike,
        value_column: str,
        id_column: Optional[str],
        source: str,
    ) -> pd.Series:
        """Pull the value Series (indexed by raw id) out of a source table."""
        if isinstance(table, pd.Series):
            values = table.copy()
        else:
            if value_column not in table.columns:
                raise ConfigurationError(
                    f"Source '{source}' has no column '{value_column}'. "
                    f"Available: {list(table.columns)}"
                )
            if id_column is not None:
                if id_column not in table.columns:
                    raise ConfigurationError(
                        f"Source '{source}' has no id column '{id_column}'. "
                        f"Available: {list(table.columns)}"
                    )
                values = pd.Series(
                    table[value_column].to_numpy(), index=table[id_column].to_numpy()
                )
            else:
                values = table[value_column].copy()
        values.index = values.index.astype(str)
        return values

    def _canonicalize(
        self,
        values: pd.Series,
        source: str,
        modality: Optional[str],
    ) -> pd.Series:
        """Translate the index into canonical ids and reject duplicates."""
        normalizer = self._normalizer(modality)
        values = values.copy()
        values.index = pd.Index(normalizer.normalize_ids(values.index), name="cell_id")

        duplicated = values.index[values.index.duplicated()]
        if len(duplicated) > 0:
            raise DuplicateCellId(source, list(pd.unique(duplicated)))
        return values


def _cluster_strings(values: pd.Series) -> pd.Series:
    """Cluster ids as strings; integral floats (``3.0``) become ``"3"``."""
    if pd.api.types.is_float_dtype(values) and (values % 1 == 0).all():
        values = values.astype(np.int64)
    return values.astype(str)


def _examples(source_ids: pd.Index, other_ids: pd.Index, n: int = 2) -> List[str]:
    return [str(i) for i in list(source_ids[:n]) + list(other_ids[:n])]
