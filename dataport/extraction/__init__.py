"""Extraction strategies, tiered execution, batching and pagination."""

from dataport.extraction.batch import BatchFailure, fetch_in_batches
from dataport.extraction.executor import extract, require
from dataport.extraction.pagination import (
    CollectOutcome,
    PageBatch,
    StopPolicy,
    StopReason,
    collect,
)
from dataport.extraction.strategy import (
    CapturedResponseStrategy,
    ExtractionStrategy,
    FunctionStrategy,
    Tier,
)

__all__ = [
    "BatchFailure",
    "CapturedResponseStrategy",
    "CollectOutcome",
    "ExtractionStrategy",
    "FunctionStrategy",
    "PageBatch",
    "StopPolicy",
    "StopReason",
    "Tier",
    "collect",
    "extract",
    "fetch_in_batches",
    "require",
]
