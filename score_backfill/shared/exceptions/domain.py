"""
Excepciones del pipeline de backfill.

Las fatales (RowSourceError, CheckpointError) cortan la corrida.
Los errores de Elasticsearch nunca llegan hasta aquí: el submitter
los convierte en items fallidos.
"""
from typing import Optional

from score_backfill.shared.exceptions.base import BackfillException


class ConfigurationError(BackfillException):
    """Error de configuración del pipeline."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details
        )


class RowSourceError(BackfillException):
    """Fallo de conexión o consulta contra PostgreSQL (fatal, no se reintenta)."""

    def __init__(self, message: str, query: Optional[str] = None):
        details = {"query": query} if query else None
        self.query = query
        super().__init__(
            message=message,
            error_code="ROW_SOURCE_ERROR",
            details=details
        )


class CheckpointError(BackfillException):
    """No se pudo persistir el checkpoint; el progreso ya no queda registrado."""

    def __init__(self, message: str, path: str):
        super().__init__(
            message=message,
            error_code="CHECKPOINT_ERROR",
            details={"path": path}
        )
