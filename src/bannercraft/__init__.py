"""Bannercraft - two-panel AI banner generation with iterative refinement."""

__version__ = "0.1.0"

__all__ = ["__version__"]
