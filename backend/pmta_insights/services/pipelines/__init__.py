"""Pipeline services package."""
from pmta_insights.services.pipelines.aggregation import (
    aggregate_file_data,
    reaggregate_file,
    run_post_ingestion_analytics,
    run_reaggregation_sweep,
)
from pmta_insights.services.pipelines.ingestion import IngestionError, process_file, submit_file

__all__ = [
    "aggregate_file_data",
    "reaggregate_file",
    "run_post_ingestion_analytics",
    "run_reaggregation_sweep",
    "IngestionError",
    "process_file",
    "submit_file",
]
