"""Data source schema reconciliation and visualization resolution."""

__version__ = "0.1.0"
