"""
Raiz de la jerarquia de errores del backfill.
"""
from typing import Any, Dict, Optional


class BackfillException(Exception):
    """
    Error conocido del backfill: lleva un codigo estable y contexto
    serializable para el log de la corrida.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "BACKFILL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def describe(self) -> str:
        """Linea unica para el log: '[CODIGO] mensaje (k=v, ...)'."""
        text = f"[{self.error_code}] {self.message}"
        if self.details:
            context = ", ".join(f"{k}={v}" for k, v in self.details.items())
            text = f"{text} ({context})"
        return text
