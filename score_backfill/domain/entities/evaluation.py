"""
Entidades del backfill de scoreDetails.

Flujo de datos:
    EvaluationRows (filas crudas de Postgres)
        -> transformador
        -> UnitOutcome: Eligible(SyncTarget) | Skipped(SkipReason) | TransformError

Se mantienen libres de I/O para poder testearlas facilmente.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


SCORE_DETAILS_FIELD = "scoreDetails"


@dataclass(frozen=True)
class ScoreDetailRow:
    """Fila cruda de evaluation_score_details unida a score_detail_categories."""

    category_id: Any
    score: Any
    justification: Optional[str] = None
    phrases: Optional[List[str]] = None
    category_slug: Optional[str] = None
    category_name: Optional[str] = None


@dataclass
class EvaluationRows:
    """
    Todas las filas de una evaluacion mas la resolucion de tenant.

    - client_external_id: external_id del cliente de la evaluacion
    - contact_client_external_id: external_id del cliente duenio del contacto
    """

    evaluation_id: str
    details: List[ScoreDetailRow] = field(default_factory=list)
    client_external_id: Optional[str] = None
    contact_client_external_id: Optional[str] = None


@dataclass(frozen=True)
class ScoreDetail:
    """
    Sub-resultado puntuado por categoria, tal como se indexa.

    Los campos None se omiten del documento (no se envian strings ni listas vacias).
    """

    category_id: Any
    score: int
    category_slug: Optional[str] = None
    category_name: Optional[str] = None
    justification: Optional[str] = None
    phrases: Optional[List[str]] = None

    def is_empty(self) -> bool:
        """Sin slug, nombre, justificacion ni frases: no aporta nada al indice."""
        return not (
            self.category_slug
            or self.category_name
            or self.justification
            or self.phrases
        )

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"categoryId": self.category_id}
        if self.category_slug is not None:
            doc["categorySlug"] = self.category_slug
        if self.category_name is not None:
            doc["categoryName"] = self.category_name
        doc["score"] = self.score
        if self.justification is not None:
            doc["justification"] = self.justification
        if self.phrases is not None:
            doc["phrases"] = list(self.phrases)
        return doc


@dataclass(frozen=True)
class SyncTarget:
    """Update parcial de un documento: indice por tenant, id = evaluation_id."""

    index_name: str
    document_id: str
    score_details: List[ScoreDetail]

    @property
    def payload(self) -> Dict[str, Any]:
        return {SCORE_DETAILS_FIELD: [d.to_document() for d in self.score_details]}


class SkipReason(Enum):
    """Motivos por los que una evaluacion no es elegible para sync."""

    NO_DETAILS = "no_details"
    ALL_DETAILS_EMPTY = "all_details_empty"
    MISSING_TENANT = "missing_tenant"
    EXCLUDED_TENANT = "excluded_tenant"


@dataclass(frozen=True)
class Eligible:
    target: SyncTarget


@dataclass(frozen=True)
class Skipped:
    evaluation_id: str
    reason: SkipReason


@dataclass(frozen=True)
class TransformError:
    evaluation_id: str
    detail: str


UnitOutcome = Union[Eligible, Skipped, TransformError]
