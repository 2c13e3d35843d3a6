"""Repeat Speed Camera Offenders Report Package"""

from . import analysis
from . import dates
from . import ingestion
from . import query
from . import report
from .dataset import ViolationDataset, open_dataset
from .query import col, count, count_distinct, sum_of

__version__ = "0.1.0"
__all__ = [
    "analysis",
    "dates",
    "ingestion",
    "query",
    "report",
    "ViolationDataset",
    "open_dataset",
    "col",
    "count",
    "count_distinct",
    "sum_of",
]
