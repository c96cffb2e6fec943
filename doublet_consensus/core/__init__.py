"""Core computational modules for doublet-consensus.

This package contains the analysis engines:
- consensus: Observation join, cell votes, cluster aggregation, final labels
"""
