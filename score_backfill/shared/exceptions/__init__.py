"""
Excepciones del backfill.
"""
from score_backfill.shared.exceptions.base import BackfillException
from score_backfill.shared.exceptions.domain import (
    ConfigurationError,
    RowSourceError,
    CheckpointError,
)

__all__ = [
    "BackfillException",
    "ConfigurationError",
    "RowSourceError",
    "CheckpointError",
]
