"""Assessment ingestion: parse and validate raw records into batches."""

from concordance.ingestion.loader import (
    IngestionBatch,
    ingest_records,
    load_assessments,
    parse_assessment,
)
from concordance.ingestion.schemas import (
    Assessment,
    Citation,
    Finding,
)

__all__ = [
    "Assessment",
    "Citation",
    "Finding",
    "IngestionBatch",
    "ingest_records",
    "load_assessments",
    "parse_assessment",
]
