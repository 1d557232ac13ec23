"""
Orquestador del backfill de scoreDetails: PostgreSQL -> Elasticsearch.

Diseño (resumen):
- Carga el checkpoint (ids ya confirmados en Elasticsearch)
- Recorre las evaluaciones del RowSource en orden, una a la vez
- Omite las ya checkpointeadas y las no elegibles
- Encola las elegibles y hace flush al llegar a BATCH_SIZE
- Tras cada flush: exitosos -> checkpoint (persistido en el acto),
  fallidos -> failure log
- Flush final al terminar (o al alcanzar MAX_UNITS)

Estrategia de idempotencia:
- Solo los exitosos confirmados entran al checkpoint; fallidos y omitidos se
  re-evaluan en la siguiente corrida.
- El update con doc_as_upsert es idempotente: reenviar un documento ya escrito
  produce el mismo estado final.
"""
from __future__ import annotations

import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from loguru import logger

from score_backfill.application.services.score_detail_transformer import ScoreDetailTransformer
from score_backfill.domain.entities.evaluation import Eligible, Skipped, TransformError
from score_backfill.infrastructure.database.pg_row_source import RowSource
from score_backfill.infrastructure.external.elastic_sync.bulk_submitter import BulkSubmitter
from score_backfill.infrastructure.persistence.checkpoint_store import CheckpointStore
from score_backfill.infrastructure.persistence.failure_log import FailureLog
from score_backfill.shared.exceptions.domain import RowSourceError


PERIODIC = "periodic"
FINAL = "final"
ABORT = "abort"
TRANSFORM = "transform"
CHECKPOINTED = "checkpointed"


@dataclass
class RunSummary:
    """
    Resumen de una corrida.

    total_discovered es el universo de evaluaciones cuando el RowSource lo
    conoce; si no, coincide con iterated (unidades recorridas antes de
    terminar o de alcanzar MAX_UNITS).
    """

    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_discovered: int = 0
    iterated: int = 0
    processed: int = 0
    checkpoint_size: int = 0
    failure_log: str = ""
    flushes: int = 0
    dry_run: bool = False
    lock_acquired: bool = True
    elapsed_s: float = 0.0
    skipped_by_reason: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["elapsed_s"] = round(self.elapsed_s, 3)
        return data


class ScoreDetailsBackfill:
    """
    Driver de una corrida. Un solo hilo: las unidades se procesan en orden
    y solo se bloquea en las consultas a Postgres y en cada request _bulk.
    """

    def __init__(
        self,
        *,
        row_source: RowSource,
        transformer: ScoreDetailTransformer,
        submitter: BulkSubmitter,
        checkpoint: CheckpointStore,
        failure_log: FailureLog,
        batch_size: int = 500,
        max_units: Optional[int] = None,
        dry_run: bool = False,
    ) -> None:
        self._source = row_source
        self._transformer = transformer
        self._submitter = submitter
        self._checkpoint = checkpoint
        self._failure_log = failure_log
        self._batch_size = batch_size
        self._max_units = max_units
        self._dry_run = dry_run
        self._summary = RunSummary()
        self._skips: Counter[str] = Counter()

    def run(self) -> RunSummary:
        started = time.monotonic()
        self._summary = RunSummary(
            dry_run=self._dry_run, failure_log=str(self._failure_log.path)
        )
        self._skips = Counter()

        self._checkpoint.load()

        with self._source as source:
            if not source.lock_acquired:
                logger.warning("Backfill ya esta corriendo (advisory lock ocupado). Saliendo.")
                self._summary.lock_acquired = False
                return self._finish(started)

            logger.info(
                f"Backfill scoreDetails: modo={source.name}, batch_size={self._batch_size}, "
                f"max_units={self._max_units or '-'}, dry_run={self._dry_run}"
            )
            self._process_units(source)
            self._flush(FINAL)
            self._summary.total_discovered = (
                source.total_units
                if source.total_units is not None
                else self._summary.iterated
            )

        return self._finish(started)

    def _process_units(self, source: RowSource) -> None:
        units = source.iter_units()
        try:
            for pending in units:
                self._summary.iterated += 1

                if pending.evaluation_id in self._checkpoint:
                    self._skip(pending.evaluation_id, CHECKPOINTED)
                    continue

                self._handle(pending.load())

                if self._max_units and self._summary.processed >= self._max_units:
                    logger.info(f"Alcanzado MAX_UNITS={self._max_units}; se detiene la iteracion")
                    break
        except RowSourceError:
            logger.error("Error fatal leyendo PostgreSQL; se envia lo acumulado antes de abortar")
            self._flush(ABORT)
            raise
        finally:
            close = getattr(units, "close", None)
            if close is not None:
                close()

    def _handle(self, rows) -> None:
        outcome = self._transformer.transform(rows)

        if isinstance(outcome, Skipped):
            self._skip(outcome.evaluation_id, outcome.reason.value)
        elif isinstance(outcome, TransformError):
            logger.warning(f"Evaluacion {outcome.evaluation_id} invalida: {outcome.detail}")
            self._summary.failed += 1
            if not self._dry_run:
                self._failure_log.append(outcome.evaluation_id, TRANSFORM, outcome.detail)
        elif isinstance(outcome, Eligible):
            self._submitter.enqueue(outcome.target)
            self._summary.processed += 1
            if self._submitter.current_size() >= self._batch_size:
                self._flush(PERIODIC)
        else:
            raise TypeError(f"Resultado de transformacion desconocido: {outcome!r}")

    def _skip(self, evaluation_id: str, reason: str) -> None:
        self._summary.skipped += 1
        self._skips[reason] += 1
        logger.debug(f"Omitida {evaluation_id}: {reason}")

    def _flush(self, reason: str) -> None:
        if self._dry_run:
            discarded = self._submitter.discard()
            if discarded:
                self._summary.flushes += 1
                logger.info(f"[DRY-RUN] Flush {reason}: {len(discarded)} documentos no enviados")
            return

        result = self._submitter.flush(reason)
        if result.is_noop:
            return

        self._summary.flushes += 1
        self._summary.success += len(result.succeeded)
        self._summary.failed += len(result.failed)

        if self._checkpoint.add_all(result.succeeded):
            self._checkpoint.persist()

        self._failure_log.append_many(
            ((f.evaluation_id, f.error) for f in result.failed), reason=reason
        )

        logger.info(
            f"Flush {reason} #{self._summary.flushes}: enviados={result.submitted}, "
            f"ok={len(result.succeeded)}, fallidos={len(result.failed)}, "
            f"{result.elapsed_s:.2f}s | acumulado ok={self._summary.success}, "
            f"fallidos={self._summary.failed}, omitidos={self._summary.skipped}"
        )

    def _finish(self, started: float) -> RunSummary:
        self._summary.elapsed_s = time.monotonic() - started
        self._summary.checkpoint_size = len(self._checkpoint)
        self._summary.skipped_by_reason = dict(self._skips)

        s = self._summary
        logger.info(
            f"Backfill terminado. Success: {s.success}, Failed: {s.failed}, "
            f"Skipped: {s.skipped}, Total: {s.total_discovered}, Iteradas: {s.iterated}, "
            f"Checkpoint: {s.checkpoint_size}, Failure log: {s.failure_log}"
        )
        return s
