"""
Transformador de filas de Postgres a updates de Elasticsearch.

Funcion pura: filas crudas de una evaluacion + sentinel de tenant excluido
-> UnitOutcome (Eligible | Skipped | TransformError). No hace I/O.

Reglas:
- score redondeado al entero mas cercano (0.5 redondea hacia arriba)
- justificacion vacia, frases vacias, slug/nombre ausentes -> campo omitido
- scoreDetail sin slug, nombre, justificacion ni frases -> se descarta
- tenant = external_id del cliente, si no el del cliente del contacto
- tenant igual al sentinel excluido (sin distinguir mayusculas) -> se omite
"""
from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, List, Optional
from uuid import UUID

from score_backfill.domain.entities.evaluation import (
    Eligible,
    EvaluationRows,
    ScoreDetail,
    ScoreDetailRow,
    SkipReason,
    Skipped,
    SyncTarget,
    TransformError,
    UnitOutcome,
)


DEFAULT_INDEX_PREFIX = "contact_evaluation__"
_HALF = Decimal("0.5")


class InvalidScoreError(ValueError):
    """El score almacenado no es un numero finito."""


def round_score(raw: Any) -> int:
    """
    Redondea half-up hacia +infinito: 3.5 -> 4, 3.49 -> 3, -2.5 -> -2.

    round() de Python usa redondeo bancario. El calculo es en Decimal:
    0.49999999999999994 -> 0.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidScoreError(f"score no numerico: {raw!r}")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise InvalidScoreError(f"score no numerico: {raw!r}") from e
    if not value.is_finite():
        raise InvalidScoreError(f"score no finito: {raw!r}")
    floor = value.to_integral_value(rounding=ROUND_FLOOR)
    if value - floor >= _HALF:
        floor += 1
    return int(floor)


def _present(value: Optional[str]) -> Optional[str]:
    return value if value else None


def _present_phrases(phrases: Any) -> Optional[List[str]]:
    if not phrases:
        return None
    return [str(p) for p in phrases]


def _category_id(value: Any) -> Any:
    # psycopg devuelve UUID para columnas uuid; el documento guarda el string
    return str(value) if isinstance(value, UUID) else value


def build_score_detail(row: ScoreDetailRow) -> ScoreDetail:
    return ScoreDetail(
        category_id=_category_id(row.category_id),
        score=round_score(row.score),
        category_slug=_present(row.category_slug),
        category_name=_present(row.category_name),
        justification=_present(row.justification),
        phrases=_present_phrases(row.phrases),
    )


def resolve_tenant_id(rows: EvaluationRows) -> Optional[str]:
    """external_id del cliente propio; si no, el del cliente del contacto."""
    tenant = rows.client_external_id or rows.contact_client_external_id
    return str(tenant) if tenant else None


def is_excluded_tenant(tenant_id: str, excluded_tenant: Optional[str]) -> bool:
    if not excluded_tenant:
        return False
    return tenant_id.casefold() == excluded_tenant.casefold()


def index_name_for(tenant_id: str, prefix: str = DEFAULT_INDEX_PREFIX) -> str:
    return f"{prefix}{tenant_id}"


class ScoreDetailTransformer:
    """
    Decide si una evaluacion se sincroniza y construye su SyncTarget.

    Uso:
        transformer = ScoreDetailTransformer(excluded_tenant="demo")
        outcome = transformer.transform(rows)
    """

    def __init__(
        self,
        *,
        excluded_tenant: Optional[str] = None,
        index_prefix: str = DEFAULT_INDEX_PREFIX,
    ) -> None:
        self._excluded_tenant = excluded_tenant
        self._index_prefix = index_prefix

    def transform(self, rows: EvaluationRows) -> UnitOutcome:
        evaluation_id = rows.evaluation_id

        if not rows.details:
            return Skipped(evaluation_id, SkipReason.NO_DETAILS)

        try:
            details = [build_score_detail(r) for r in rows.details]
        except InvalidScoreError as e:
            return TransformError(evaluation_id, str(e))

        details = [d for d in details if not d.is_empty()]
        if not details:
            return Skipped(evaluation_id, SkipReason.ALL_DETAILS_EMPTY)

        tenant_id = resolve_tenant_id(rows)
        if not tenant_id:
            return Skipped(evaluation_id, SkipReason.MISSING_TENANT)
        if is_excluded_tenant(tenant_id, self._excluded_tenant):
            return Skipped(evaluation_id, SkipReason.EXCLUDED_TENANT)

        return Eligible(
            SyncTarget(
                index_name=index_name_for(tenant_id, self._index_prefix),
                document_id=evaluation_id,
                score_details=details,
            )
        )
