"""Table-session order and billing service."""

__version__ = "1.0.0"
