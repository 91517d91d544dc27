"""Session status monitor for interactive coding agents."""

__version__ = "0.3.0"

__all__ = ["__version__"]
