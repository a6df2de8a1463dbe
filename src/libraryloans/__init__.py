"""Book catalog and loan tracking for a lending library."""

__version__ = "0.1.0"
