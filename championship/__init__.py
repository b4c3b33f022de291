"""Championship: phased escrow and settlement engine for agent challenges."""

__version__ = "0.1.0"
__author__ = "Championship Team"

__all__ = ["__version__", "__author__"]
