"""planflow: evaluation engine for plan creation and completion workflows."""

__version__ = "0.1.0"

__all__ = ["__version__"]
