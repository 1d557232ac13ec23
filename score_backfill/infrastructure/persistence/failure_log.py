"""
Failure log append-only en NDJSON.

Cada linea: {"id": ..., "reason": ..., "timestamp": ..., "detail": ...}
- reason: tag de la fase que registro el fallo (periodic, final, abort, transform)
- detail: mensaje de error del item o de la request (opcional)

Nunca se deduplica: un mismo id puede aparecer varias veces entre corridas.
El archivo se crea en la primera escritura.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from score_backfill.shared.utils.datetime_utils import isoformat_z, utc_now


@dataclass(frozen=True)
class FailureRecord:
    evaluation_id: str
    reason: str
    timestamp: datetime
    detail: Optional[str] = None

    def to_json(self) -> dict:
        data = {
            "id": self.evaluation_id,
            "reason": self.reason,
            "timestamp": isoformat_z(self.timestamp),
        }
        if self.detail:
            data["detail"] = self.detail
        return data


class FailureLog:
    """Archivo NDJSON de fallos, abierto en modo append por escritura."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._written = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def written(self) -> int:
        """Registros agregados durante esta corrida."""
        return self._written

    def append(self, evaluation_id: str, reason: str, detail: Optional[str] = None) -> None:
        self.append_many([(evaluation_id, detail)], reason=reason)

    def append_many(
        self,
        failures: Iterable[tuple[str, Optional[str]]],
        *,
        reason: str,
    ) -> int:
        now = utc_now()
        records = [
            FailureRecord(evaluation_id=eid, reason=reason, timestamp=now, detail=detail)
            for eid, detail in failures
        ]
        if not records:
            return 0

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            for record in records:
                fh.write(json.dumps(record.to_json(), ensure_ascii=False) + "\n")

        self._written += len(records)
        return len(records)
