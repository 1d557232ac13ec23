"""
Configuracion de logging (loguru) para las corridas del backfill.

Instala dos sinks:
- stderr: progreso por flush y resumen final
- archivo: detalle completo de la corrida, con rotacion
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Reemplaza los handlers por defecto de loguru.

    Args:
        level: Nivel minimo para la consola
        log_file: Ruta del archivo de log; None desactiva el sink de archivo
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            rotation="500 MB",
            retention="10 days",
            level="DEBUG",
        )
