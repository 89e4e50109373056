"""PMTA log ingestion, aggregation and incident detection."""
__version__ = "1.0.0"
