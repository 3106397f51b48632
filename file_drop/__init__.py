"""Anonymous HTTP file drop server."""

__version__ = "0.1.0"
