"""
CLI: backfill de scoreDetails PostgreSQL -> Elasticsearch.

Uso recomendado:
  - Ejecutar como job puntual; se puede relanzar las veces que haga falta,
    el checkpoint evita reenviar lo ya migrado.

Variables de entorno: ver score_backfill.core.config.Settings.

Ejecución:
  python scripts/backfill_score_details.py
  python scripts/backfill_score_details.py --mode stream --batch-size 1000
  python scripts/backfill_score_details.py --dry-run --max-units 50
"""
from __future__ import annotations

import argparse
import json
from typing import Optional, Sequence

from loguru import logger
from pydantic import ValidationError

from score_backfill.application.services.score_detail_transformer import ScoreDetailTransformer
from score_backfill.application.use_cases.backfill_use_case import RunSummary, ScoreDetailsBackfill
from score_backfill.core.config import ROW_SOURCE_MODES, Settings
from score_backfill.infrastructure.database.pg_row_source import PostgresConnector, build_row_source
from score_backfill.infrastructure.external.elastic_sync.bulk_submitter import BulkSubmitter
from score_backfill.infrastructure.external.elastic_sync.es_client import build_es_client
from score_backfill.infrastructure.persistence.checkpoint_store import CheckpointStore
from score_backfill.infrastructure.persistence.failure_log import FailureLog
from score_backfill.shared.exceptions.base import BackfillException
from score_backfill.shared.utils.run_logger import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Backfill de scoreDetails desde PostgreSQL hacia Elasticsearch"
    )
    parser.add_argument(
        "--mode",
        choices=ROW_SOURCE_MODES,
        help="Estrategia de lectura: point (consultas por evaluacion) o stream (cursor).",
    )
    parser.add_argument("--batch-size", type=int, help="Operaciones por request _bulk.")
    parser.add_argument(
        "--max-units",
        type=int,
        help="Maximo de evaluaciones a encolar en esta corrida (corridas acotadas).",
    )
    parser.add_argument("--checkpoint-file", help="Ruta del checkpoint JSON.")
    parser.add_argument("--failure-log", help="Ruta del failure log NDJSON.")
    parser.add_argument("--excluded-tenant", help="external_id de cliente a excluir.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Transforma y cuenta, pero no envia a Elasticsearch ni toca el checkpoint.",
    )
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="No tomar el advisory lock de Postgres.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Mostrar mensajes de debug")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Los flags de CLI pisan los valores de entorno."""
    overrides = {
        "ROW_SOURCE_MODE": args.mode,
        "BATCH_SIZE": args.batch_size,
        "MAX_UNITS": args.max_units,
        "CHECKPOINT_FILE": args.checkpoint_file,
        "FAILURE_LOG_FILE": args.failure_log,
        "EXCLUDED_TENANT": args.excluded_tenant,
    }
    update = {k: v for k, v in overrides.items() if v is not None}
    if args.no_lock:
        update["USE_ADVISORY_LOCK"] = False
    if args.verbose:
        update["LOG_LEVEL"] = "DEBUG"
    return settings.model_copy(update=update) if update else settings


def build_backfill(settings: Settings, *, dry_run: bool = False) -> ScoreDetailsBackfill:
    """
    Constructor "oficial" del pipeline a partir de Settings.
    """
    connector = PostgresConnector(settings.effective_database_url)
    row_source = build_row_source(
        settings.ROW_SOURCE_MODE,
        connector,
        fetch_size=settings.STREAM_FETCH_SIZE,
        advisory_lock_key=settings.ADVISORY_LOCK_KEY if settings.USE_ADVISORY_LOCK else None,
    )
    submitter = BulkSubmitter(
        build_es_client(settings), retry_on_conflict=settings.RETRY_ON_CONFLICT
    )
    transformer = ScoreDetailTransformer(
        excluded_tenant=settings.excluded_tenant, index_prefix=settings.INDEX_PREFIX
    )
    return ScoreDetailsBackfill(
        row_source=row_source,
        transformer=transformer,
        submitter=submitter,
        checkpoint=CheckpointStore(settings.CHECKPOINT_FILE),
        failure_log=FailureLog(settings.FAILURE_LOG_FILE),
        batch_size=settings.BATCH_SIZE,
        max_units=settings.MAX_UNITS,
        dry_run=dry_run,
    )


def print_summary(summary: RunSummary) -> None:
    print(json.dumps(summary.as_dict(), indent=2, ensure_ascii=False))


def main(argv: Optional[Sequence[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = apply_overrides(settings or Settings(), args)
    except ValidationError as e:
        logger.error(f"Configuracion invalida (entorno o .env):\n{e}")
        return 1

    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    try:
        settings.validate_backfill()
        backfill = build_backfill(settings, dry_run=args.dry_run)
        logger.info("Iniciando backfill de scoreDetails PostgreSQL -> Elasticsearch...")
        summary = backfill.run()
    except BackfillException as e:
        logger.error(f"Backfill abortado: {e.describe()}")
        return 1
    except Exception as e:
        logger.exception(f"Backfill abortado: {e}")
        return 1

    print_summary(summary)
    logger.info(f"Failure log: {summary.failure_log}")
    return 0
