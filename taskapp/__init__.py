"""Task tracker REST backend."""

__version__ = "0.1.0"
