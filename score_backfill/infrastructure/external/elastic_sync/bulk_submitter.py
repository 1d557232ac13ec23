"""
Envio por lotes de updates parciales a Elasticsearch (_bulk).

Cada evaluacion elegible se traduce en dos lineas del bulk:
    {"update": {"_index": ..., "_id": ..., "retry_on_conflict": 3, "require_alias": false}}
    {"doc": {"scoreDetails": [...]}, "doc_as_upsert": true}

El buffer y la lista de ids pendientes pertenecen a la instancia. El orden de
pending_ids es exactamente el orden de las operaciones: Elasticsearch responde
un item por operacion en el mismo orden, y el emparejamiento es posicional.

Clasificacion al hacer flush:
- buffer vacio: no-op
- error de transporte/API en la request: todos los ids del lote fallan
- request OK: item con "error" -> fallido, el resto -> exitoso
- cantidad de items != cantidad de ids: warning; los ids sin item cuentan como fallidos
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from elasticsearch import ApiError, Elasticsearch, TransportError
from loguru import logger

from score_backfill.domain.entities.evaluation import SyncTarget


REFRESH_MODE = "wait_for"
MISSING_OUTCOME = "sin item de respuesta para esta operacion"


@dataclass(frozen=True)
class FailedItem:
    evaluation_id: str
    error: str


@dataclass
class FlushResult:
    """Resultado de un flush: ids exitosos, fallidos y error de request si lo hubo."""

    reason: str
    submitted: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: List[FailedItem] = field(default_factory=list)
    transport_error: Optional[str] = None
    elapsed_s: float = 0.0

    @property
    def is_noop(self) -> bool:
        return self.submitted == 0


def _describe_item_error(error: Any) -> str:
    if isinstance(error, dict):
        err_type = error.get("type", "error")
        err_reason = error.get("reason", "")
        return f"{err_type}: {err_reason}".strip().rstrip(":")
    return str(error)


def _describe_request_error(error: Exception) -> str:
    """
    Texto del fallo de la request para el failure log.

    Los errores de transporte de elastic_transport reducen str() a un texto
    generico ("Connection error"); el mensaje y las causas van en
    .message y .errors.
    """
    if isinstance(error, ApiError):
        return f"{type(error).__name__}: {error}"

    message = getattr(error, "message", None) or error
    text = f"{type(error).__name__}: {message}"
    causes = "; ".join(
        f"{type(cause).__name__}({cause})" for cause in getattr(error, "errors", ())
    )
    return f"{text} (causa: {causes})" if causes else text


class BulkSubmitter:
    """
    Acumula operaciones update+upsert y las envia en una sola request _bulk.

    Uso:
        submitter = BulkSubmitter(es_client)
        submitter.enqueue(target)
        if submitter.current_size() >= batch_size:
            result = submitter.flush("periodic")
    """

    def __init__(
        self,
        client: Elasticsearch,
        *,
        retry_on_conflict: int = 3,
        refresh: str = REFRESH_MODE,
    ) -> None:
        self._client = client
        self._retry_on_conflict = retry_on_conflict
        self._refresh = refresh
        self._operations: List[Dict[str, Any]] = []
        self._pending_ids: List[str] = []

    def enqueue(self, target: SyncTarget) -> None:
        self._operations.append(
            {
                "update": {
                    "_index": target.index_name,
                    "_id": target.document_id,
                    "retry_on_conflict": self._retry_on_conflict,
                    "require_alias": False,
                }
            }
        )
        self._operations.append({"doc": target.payload, "doc_as_upsert": True})
        self._pending_ids.append(target.document_id)

    def current_size(self) -> int:
        return len(self._pending_ids)

    def discard(self) -> List[str]:
        """Vacia el buffer sin enviar (modo dry-run). Retorna los ids descartados."""
        ids = list(self._pending_ids)
        self._operations = []
        self._pending_ids = []
        return ids

    def flush(self, reason: str) -> FlushResult:
        if not self._pending_ids:
            return FlushResult(reason=reason)

        operations = self._operations
        pending_ids = self._pending_ids
        # El buffer se limpia siempre, incluso si la request falla
        self._operations = []
        self._pending_ids = []

        result = FlushResult(reason=reason, submitted=len(pending_ids))
        started = time.monotonic()
        try:
            response = self._client.bulk(operations=operations, refresh=self._refresh)
        except (ApiError, TransportError) as e:
            result.elapsed_s = time.monotonic() - started
            result.transport_error = _describe_request_error(e)
            result.failed = [FailedItem(eid, result.transport_error) for eid in pending_ids]
            logger.error(
                f"Bulk ({reason}) fallo completo: {len(pending_ids)} documentos marcados "
                f"como fallidos. {result.transport_error}"
            )
            return result

        result.elapsed_s = time.monotonic() - started
        body = getattr(response, "body", response) or {}
        items = body.get("items") or []

        if len(items) != len(pending_ids):
            logger.warning(
                f"Bulk ({reason}): {len(items)} items en la respuesta para "
                f"{len(pending_ids)} operaciones; emparejamiento best-effort"
            )

        for position, evaluation_id in enumerate(pending_ids):
            if position >= len(items):
                result.failed.append(FailedItem(evaluation_id, MISSING_OUTCOME))
                continue

            item = items[position] or {}
            outcome = next(iter(item.values()), {}) if isinstance(item, dict) else {}
            error = outcome.get("error") if isinstance(outcome, dict) else None
            if error:
                result.failed.append(FailedItem(evaluation_id, _describe_item_error(error)))
            else:
                result.succeeded.append(evaluation_id)

        if result.failed:
            for failed in result.failed[:5]:
                logger.warning(f"Item fallido evaluation_id={failed.evaluation_id}: {failed.error}")
        return result
