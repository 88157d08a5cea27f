"""Bridge conversations between chat networks."""

__version__ = "0.1.0"
