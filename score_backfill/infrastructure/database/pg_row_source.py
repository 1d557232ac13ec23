"""
Lectura de scoreDetails desde PostgreSQL (psycopg v3).

Dos estrategias intercambiables con la misma interfaz (RowSource):

- PointQueryRowSource: lista los evaluation_id distintos y hace dos consultas
  por evaluacion (detalles + resolucion de tenant). Sirve para volumenes
  chicos/medianos y evita consultar evaluaciones ya checkpointeadas.
- StreamingCursorRowSource: un unico cursor de servidor que une evaluaciones,
  detalles, categorias y tenant, leido en lotes de tamanio fijo. Memoria acotada.

Ambas producen PendingUnit: el id se conoce antes de cargar las filas, asi el
driver puede saltar ids ya migrados sin pagar las consultas.

Cualquier error de conexion o consulta es fatal (RowSourceError).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from score_backfill.domain.entities.evaluation import EvaluationRows, ScoreDetailRow
from score_backfill.shared.exceptions.domain import RowSourceError


DISTINCT_EVALUATION_IDS_SQL = """
    SELECT DISTINCT evaluation_id
    FROM evaluation_score_details
    ORDER BY evaluation_id
"""

EVALUATION_DETAILS_SQL = """
    SELECT esd.category_id, esd.score, esd.justification, esd.phrases,
           c.slug AS category_slug, c.name AS category_name
    FROM evaluation_score_details esd
    LEFT JOIN score_detail_categories c
      ON esd.category_id = c.id
    WHERE esd.evaluation_id = %s
"""

EVALUATION_TENANT_SQL = """
    SELECT e.id,
           cl.external_id AS client_external_id,
           cc.external_id AS contact_client_external_id
    FROM evaluations e
    LEFT JOIN clients cl ON e.client_id = cl.id
    LEFT JOIN contacts ct ON e.contact_id = ct.id
    LEFT JOIN clients cc ON ct.client_id = cc.id
    WHERE e.id = %s
"""

# Ordenado por evaluation_id: las filas de una evaluacion llegan contiguas,
# aunque crucen el borde de un lote del cursor.
STREAM_SCORE_DETAILS_SQL = """
    SELECT esd.evaluation_id,
           esd.category_id, esd.score, esd.justification, esd.phrases,
           c.slug AS category_slug, c.name AS category_name,
           cl.external_id AS client_external_id,
           cc.external_id AS contact_client_external_id
    FROM evaluation_score_details esd
    LEFT JOIN score_detail_categories c ON esd.category_id = c.id
    LEFT JOIN evaluations e ON e.id = esd.evaluation_id
    LEFT JOIN clients cl ON e.client_id = cl.id
    LEFT JOIN contacts ct ON e.contact_id = ct.id
    LEFT JOIN clients cc ON ct.client_id = cc.id
    ORDER BY esd.evaluation_id
"""

STREAM_CURSOR_NAME = "score_details_backfill"


@dataclass
class PendingUnit:
    """Evaluacion descubierta; las filas se cargan solo si hacen falta."""

    evaluation_id: str
    loader: Callable[[], EvaluationRows]

    def load(self) -> EvaluationRows:
        return self.loader()


class RowSource(Protocol):
    """
    Interfaz comun de lectura.

    Se usa como context manager (abre/cierra la conexion). iter_units() es
    finito y no reiniciable dentro de una corrida. total_units es la cantidad
    de evaluaciones del universo cuando la estrategia la conoce (point, una
    vez iniciada la iteracion); None si no (stream).
    """

    name: str
    lock_acquired: bool
    total_units: Optional[int]

    def __enter__(self) -> "RowSource":
        ...

    def __exit__(self, exc_type, exc, tb) -> None:
        ...

    def iter_units(self) -> Iterator[PendingUnit]:
        ...


class PostgresConnector:
    """Abre conexiones psycopg y administra el advisory lock del job."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def connect(self) -> psycopg.Connection:
        """
        Abre conexion (autocommit False): toda la lectura ocurre en una
        sola transaccion, requisito del cursor de servidor.
        """
        try:
            return psycopg.connect(self._dsn, row_factory=dict_row)
        except psycopg.OperationalError as e:
            raise RowSourceError(
                f"No se pudo conectar a PostgreSQL: {e}\n"
                f"Sugerencia: verifica DATABASE_URL / DB_HOST y que Postgres sea accesible "
                f"desde donde ejecutas el script."
            ) from e

    def try_advisory_lock(self, conn: psycopg.Connection, lock_key: int) -> bool:
        """
        Evita ejecuciones simultaneas del mismo job.
        """
        with conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(%s) AS locked", (lock_key,))
            row = cur.fetchone()
            return bool(row and row.get("locked"))


def _to_id(value: Any) -> str:
    return str(value)


def _detail_from_row(row: dict[str, Any]) -> ScoreDetailRow:
    return ScoreDetailRow(
        category_id=row.get("category_id"),
        score=row.get("score"),
        justification=row.get("justification"),
        phrases=row.get("phrases"),
        category_slug=row.get("category_slug"),
        category_name=row.get("category_name"),
    )


class _PostgresRowSource:
    """Base comun: conexion, advisory lock y cierre."""

    name = "postgres"

    def __init__(
        self,
        connector: PostgresConnector,
        *,
        advisory_lock_key: Optional[int] = None,
    ) -> None:
        self._connector = connector
        self._lock_key = advisory_lock_key
        self._conn: Optional[psycopg.Connection] = None
        self.lock_acquired = True
        # Cantidad total de evaluaciones si se conoce antes de iterar
        self.total_units: Optional[int] = None

    def __enter__(self) -> "_PostgresRowSource":
        self._conn = self._connector.connect()
        if self._lock_key is not None:
            try:
                self.lock_acquired = self._connector.try_advisory_lock(self._conn, self._lock_key)
            except psycopg.Error as e:
                self.close()
                raise RowSourceError(f"No se pudo tomar el advisory lock: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.debug("Conexion a PostgreSQL cerrada")

    @property
    def conn(self) -> psycopg.Connection:
        if self._conn is None:
            raise RowSourceError("RowSource usado fuera de su context manager")
        return self._conn


class PointQueryRowSource(_PostgresRowSource):
    """Tres consultas puntuales: ids distintos, detalles por id, tenant por id."""

    name = "point"

    def iter_units(self) -> Iterator[PendingUnit]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(DISTINCT_EVALUATION_IDS_SQL)
                evaluation_ids = [_to_id(r["evaluation_id"]) for r in cur.fetchall()]
        except psycopg.Error as e:
            raise RowSourceError(
                f"Fallo listando evaluation_ids: {e}", query="distinct_evaluation_ids"
            ) from e

        self.total_units = len(evaluation_ids)
        logger.info(f"Encontradas {len(evaluation_ids)} evaluaciones con scoreDetails")

        for evaluation_id in evaluation_ids:
            yield PendingUnit(
                evaluation_id=evaluation_id,
                loader=lambda eid=evaluation_id: self.load_evaluation(eid),
            )

    def load_evaluation(self, evaluation_id: str) -> EvaluationRows:
        try:
            with self.conn.cursor() as cur:
                cur.execute(EVALUATION_DETAILS_SQL, (evaluation_id,))
                details = [_detail_from_row(r) for r in cur.fetchall()]

                rows = EvaluationRows(evaluation_id=evaluation_id, details=details)
                if not details:
                    return rows

                cur.execute(EVALUATION_TENANT_SQL, (evaluation_id,))
                ev = cur.fetchone()
        except psycopg.Error as e:
            raise RowSourceError(
                f"Fallo cargando la evaluacion {evaluation_id}: {e}", query="evaluation_details"
            ) from e

        if ev:
            rows.client_external_id = ev.get("client_external_id")
            rows.contact_client_external_id = ev.get("contact_client_external_id")
        return rows


class StreamingCursorRowSource(_PostgresRowSource):
    """
    Cursor de servidor leido con fetchmany(fetch_size).

    Las filas vienen ordenadas por evaluation_id y los grupos parciales se
    acumulan entre lotes: una evaluacion se emite recien cuando aparece la
    siguiente (o termina el cursor). Nunca se emiten dos updates parciales
    para la misma evaluacion.
    """

    name = "stream"

    def __init__(
        self,
        connector: PostgresConnector,
        *,
        fetch_size: int = 5000,
        advisory_lock_key: Optional[int] = None,
    ) -> None:
        super().__init__(connector, advisory_lock_key=advisory_lock_key)
        self._fetch_size = fetch_size

    def iter_units(self) -> Iterator[PendingUnit]:
        current: Optional[EvaluationRows] = None
        fetched_batches = 0
        fetched_rows = 0

        try:
            with self.conn.cursor(name=STREAM_CURSOR_NAME) as cur:
                cur.itersize = self._fetch_size
                cur.execute(STREAM_SCORE_DETAILS_SQL)

                while True:
                    batch = cur.fetchmany(self._fetch_size)
                    if not batch:
                        break
                    fetched_batches += 1
                    fetched_rows += len(batch)
                    logger.debug(
                        f"Lote #{fetched_batches} del cursor: {len(batch)} filas "
                        f"(acumulado {fetched_rows})"
                    )

                    for row in batch:
                        evaluation_id = _to_id(row["evaluation_id"])
                        if current is not None and current.evaluation_id != evaluation_id:
                            yield _ready(current)
                            current = None
                        if current is None:
                            current = EvaluationRows(
                                evaluation_id=evaluation_id,
                                client_external_id=row.get("client_external_id"),
                                contact_client_external_id=row.get("contact_client_external_id"),
                            )
                        current.details.append(_detail_from_row(row))
        except psycopg.Error as e:
            raise RowSourceError(
                f"Fallo leyendo el cursor de scoreDetails: {e}", query="stream_score_details"
            ) from e

        if current is not None:
            yield _ready(current)

        logger.info(f"Cursor agotado: {fetched_rows} filas en {fetched_batches} lotes")


def _ready(rows: EvaluationRows) -> PendingUnit:
    return PendingUnit(evaluation_id=rows.evaluation_id, loader=lambda: rows)


def build_row_source(
    mode: str,
    connector: PostgresConnector,
    *,
    fetch_size: int = 5000,
    advisory_lock_key: Optional[int] = None,
) -> _PostgresRowSource:
    """Selecciona la estrategia de lectura segun ROW_SOURCE_MODE."""
    if mode == "stream":
        return StreamingCursorRowSource(
            connector, fetch_size=fetch_size, advisory_lock_key=advisory_lock_key
        )
    if mode == "point":
        return PointQueryRowSource(connector, advisory_lock_key=advisory_lock_key)
    raise ValueError(f"Modo de lectura desconocido: {mode}")
