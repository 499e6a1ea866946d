"""Assessment aggregation and discrepancy detection."""

__version__ = "0.1.0"
