"""
Entidades del dominio.
"""
from score_backfill.domain.entities.evaluation import (
    EvaluationRows,
    ScoreDetailRow,
    ScoreDetail,
    SyncTarget,
    SkipReason,
    Eligible,
    Skipped,
    TransformError,
    UnitOutcome,
)

__all__ = [
    "EvaluationRows",
    "ScoreDetailRow",
    "ScoreDetail",
    "SyncTarget",
    "SkipReason",
    "Eligible",
    "Skipped",
    "TransformError",
    "UnitOutcome",
]
