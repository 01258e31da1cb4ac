"""Persistence of calculation records and saved comparisons."""

from cityprosperity.storage.models import ComparisonSet
from cityprosperity.storage.repository import (
    InMemoryRecordRepository,
    RecordRepository,
    SQLiteRecordRepository,
    create_repository,
)

__all__ = [
    "ComparisonSet",
    "InMemoryRecordRepository",
    "RecordRepository",
    "SQLiteRecordRepository",
    "create_repository",
]
