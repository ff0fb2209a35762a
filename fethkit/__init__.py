"""Management and raw frame I/O for macOS feth (fake ethernet) interfaces."""

__version__ = "0.1.0"

__all__ = ["__version__"]