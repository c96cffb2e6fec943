"""Centralized cell identifier conventions per sequencing modality.

Sources built on different modalities often version the same cell barcode
differently (e.g. ArchR names ATAC cells ``sample#AAACGAAAGCGCAATG-1`` while
Seurat names the RNA cell ``AAACGAAAGCGCAATG-1``). Every source handed to the
observation store declares its modality, and identifiers are translated into
the canonical namespace through ``normalize_id(raw_id, source_kind)`` before
any join happens.

New source kinds plug in by registering a ModalityConfig (or a subclass that
overrides ``normalize_id``); the join logic never changes.

Example
-------
>>> from doublet_consensus.config import normalize_id, get_modality_config
>>> normalize_id("sampleA#AAACGAAAGCGCAATG-1", "atac")
'AAACGAAAGCGCAATG-1'
>>> normalize_id("AAACGAAAGCGCAATG", "bare_barcode")
'AAACGAAAGCGCAATG-1'
>>> get_modality_config("archr").modality_name
'atac'
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml


@dataclass
class ModalityConfig:
    """Identifier convention for one source kind.

    Normalization steps are applied in order: strip surrounding whitespace,
    drop everything up to the last ``prefix_separator``, remove
    ``strip_suffix``, then add ``append_suffix`` if it is not already there.

    Attributes
    ----------
    modality_name : str
        Canonical modality name (lowercase, underscores)
    prefix_separator : str, optional
        Separator ending a sample prefix (e.g. "#" for ArchR)
    strip_suffix : str, optional
        Suffix removed when present (e.g. "-1")
    append_suffix : str, optional
        Suffix appended when missing (e.g. "-1")
    aliases : List[str]
        Alternative names for this modality
    description : str
        Short description shown by the CLI
    """

    modality_name: str
    prefix_separator: Optional[str] = None
    strip_suffix: Optional[str] = None
    append_suffix: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    description: str = ""

    def normalize_id(self, raw_id: Any) -> str:
        """Translate one raw identifier into the canonical namespace.

        Parameters
        ----------
        raw_id : Any
            Identifier as found in the source table

        Returns
        -------
        str
            Canonical cell identifier
        """
        cell_id = str(raw_id).strip()
        if self.prefix_separator and self.prefix_separator in cell_id:
            cell_id = cell_id.rsplit(self.prefix_separator, 1)[-1]
        if self.strip_suffix and cell_id.endswith(self.strip_suffix):
            cell_id = cell_id[: -len(self.strip_suffix)]
        if self.append_suffix and not cell_id.endswith(self.append_suffix):
            cell_id = cell_id + self.append_suffix
        return cell_id

    def normalize_ids(self, raw_ids: Iterable[Any]) -> List[str]:
        """Translate a sequence of identifiers, preserving order."""
        return [self.normalize_id(raw_id) for raw_id in raw_ids]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.modality_name,
            "prefix_separator": self.prefix_separator,
            "strip_suffix": self.strip_suffix,
            "append_suffix": self.append_suffix,
            "aliases": list(self.aliases),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModalityConfig":
        """Create a modality config from a dictionary.

        Accepts either ``name`` or ``modality_name`` for the modality name.
        """
        name = data.get("name", data.get("modality_name", ""))
        if not name:
            raise ValueError("Modality definition requires a 'name'")
        return cls(
            modality_name=_canonical_name(name),
            prefix_separator=data.get("prefix_separator"),
            strip_suffix=data.get("strip_suffix"),
            append_suffix=data.get("append_suffix"),
            aliases=list(data.get("aliases", [])),
            description=data.get("description", ""),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> List["ModalityConfig"]:
        """Load modality configs from a YAML file.

        The file holds either a single definition or a ``modalities`` list.

        Parameters
        ----------
        path : Path
            Path to YAML file

        Returns
        -------
        List[ModalityConfig]
            Loaded configurations
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "modalities" in data:
            return [cls.from_dict(entry) for entry in data["modalities"]]
        return [cls.from_dict(data)]


# =============================================================================
# Registry
# =============================================================================

# Global registry of modality configurations
MODALITY_CONFIG_REGISTRY: Dict[str, ModalityConfig] = {}

# Aliases map modality aliases to canonical names
MODALITY_ALIASES: Dict[str, str] = {}

# Flag to track if builtin configs have been loaded
_BUILTINS_LOADED = False


def _canonical_name(name: str) -> str:
    return str(name).strip().lower().replace(" ", "_").replace("-", "_")


def register_modality_config(config: ModalityConfig) -> None:
    """Register a modality configuration.

    Registering a name that already exists replaces the previous entry.

    Parameters
    ----------
    config : ModalityConfig
        Configuration to register
    """
    _ensure_builtins_loaded()
    modality_name = _canonical_name(config.modality_name)
    MODALITY_CONFIG_REGISTRY[modality_name] = config

    for alias in config.aliases:
        MODALITY_ALIASES[_canonical_name(alias)] = modality_name


def get_modality_config(modality: Optional[str] = None) -> ModalityConfig:
    """Get modality configuration by name or alias.

    Parameters
    ----------
    modality : str, optional
        Modality name or alias. If None or "generic", returns the identity
        convention.

    Returns
    -------
    ModalityConfig
        Modality configuration

    Raises
    ------
    ValueError
        If modality is not registered
    """
    _ensure_builtins_loaded()

    if modality is None:
        return MODALITY_CONFIG_REGISTRY["generic"]

    name = _canonical_name(modality)
    if name in MODALITY_ALIASES:
        name = MODALITY_ALIASES[name]

    if name not in MODALITY_CONFIG_REGISTRY:
        available = sorted(MODALITY_CONFIG_REGISTRY.keys())
        alias_info = [f"{k} -> {v}" for k, v in sorted(MODALITY_ALIASES.items())]
        raise ValueError(
            f"Unknown modality: '{modality}'. "
            f"Available: {available}. "
            f"Aliases: {alias_info}"
        )

    return MODALITY_CONFIG_REGISTRY[name]


def normalize_id(raw_id: Any, source_kind: Optional[str] = None) -> str:
    """Translate a raw identifier from ``source_kind`` into the canonical namespace.

    Parameters
    ----------
    raw_id : Any
        Identifier as found in the source table
    source_kind : str, optional
        Modality name or alias (None means identity)

    Returns
    -------
    str
        Canonical cell identifier
    """
    return get_modality_config(source_kind).normalize_id(raw_id)


def list_available_modalities() -> List[str]:
    """List all registered modality names (canonical)."""
    _ensure_builtins_loaded()
    return sorted(MODALITY_CONFIG_REGISTRY.keys())


def list_modality_aliases() -> Dict[str, str]:
    """List all modality aliases as a map of alias -> canonical name."""
    _ensure_builtins_loaded()
    return dict(MODALITY_ALIASES)


def _ensure_builtins_loaded() -> None:
    """Ensure builtin configs are loaded."""
    global _BUILTINS_LOADED
    if _BUILTINS_LOADED:
        return

    _BUILTINS_LOADED = True
    _load_builtin_configs()


def _load_builtin_configs() -> None:
    """Register the builtin identifier conventions."""
    builtins = [
        ModalityConfig(
            modality_name="generic",
            description="Identifiers are used as-is",
        ),
        ModalityConfig(
            modality_name="rna",
            aliases=["gex", "scrna", "seurat"],
            description="Cell Ranger / Seurat barcodes (AAACGAAAGCGCAATG-1)",
        ),
        ModalityConfig(
            modality_name="atac",
            prefix_separator="#",
            aliases=["archr", "scatac"],
            description="ArchR cell names (sample#AAACGAAAGCGCAATG-1)",
        ),
        ModalityConfig(
            modality_name="bare_barcode",
            append_suffix="-1",
            aliases=["no_suffix"],
            description="Barcodes without GEM well suffix (AAACGAAAGCGCAATG)",
        ),
    ]
    for config in builtins:
        register_modality_config(config)
