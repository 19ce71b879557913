"""BookAdapter - e-book library synchronization."""

__version__ = "0.1.0"
