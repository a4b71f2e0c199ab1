"""QR one-time payment token service."""

__version__ = "0.1.0"
