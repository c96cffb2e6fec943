"""Centralized configuration for doublet-consensus.

This module provides the cell identifier conventions (modalities) used to
translate identifiers from heterogeneous sources into one canonical
namespace before joining.

Example
-------
>>> from doublet_consensus.config import get_modality_config, list_available_modalities
>>>
>>> # List available modalities
>>> print(list_available_modalities())
['atac', 'bare_barcode', 'generic', 'rna']
>>>
>>> # Get config for ATAC (with alias)
>>> config = get_modality_config("archr")
>>> config.normalize_id("S1#AAACGAAAGCGCAATG-1")
'AAACGAAAGCGCAATG-1'
"""

from .modality import (
    ModalityConfig,
    get_modality_config,
    list_available_modalities,
    list_modality_aliases,
    normalize_id,
    register_modality_config,
)

__all__ = [
    "ModalityConfig",
    "get_modality_config",
    "list_available_modalities",
    "list_modality_aliases",
    "normalize_id",
    "register_modality_config",
]
