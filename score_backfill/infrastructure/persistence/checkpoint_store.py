"""
Checkpoint persistido en archivo: set de evaluation_ids ya escritos en Elasticsearch.

Formato: un array JSON de strings.

Garantias:
- Escritura atomica: archivo temporal en el mismo directorio + fsync + rename.
  Un crash nunca deja un checkpoint truncado.
- Lectura permisiva: archivo inexistente, vacio o corrupto -> set vacio con warning.
- Solo crece: nunca se quitan ids.
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Set

from loguru import logger

from score_backfill.shared.exceptions.domain import CheckpointError


class CheckpointStore:
    """
    Set de ids confirmados, con persistencia inmediata.

    Uso:
        store = CheckpointStore(Path("data/checkpoint.json"))
        store.load()
        if not store.contains(evaluation_id): ...
        if store.add_all(succeeded_ids):
            store.persist()
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._ids: Set[str] = set()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Set[str]:
        self._ids = self._read()
        logger.info(f"Checkpoint cargado: {len(self._ids)} ids desde {self._path}")
        return set(self._ids)

    def _read(self) -> Set[str]:
        if not self._path.exists():
            logger.info(f"Checkpoint {self._path} no existe; se inicia vacio")
            return set()

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"No se pudo leer el checkpoint {self._path}: {e}. Se inicia vacio")
            return set()

        if not raw.strip():
            logger.warning(f"Checkpoint {self._path} vacio; se inicia vacio")
            return set()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Checkpoint {self._path} corrupto ({e}); se inicia vacio")
            return set()

        if not isinstance(data, list):
            logger.warning(
                f"Checkpoint {self._path} no es un array JSON ({type(data).__name__}); se inicia vacio"
            )
            return set()

        return {str(item) for item in data if item is not None}

    def contains(self, evaluation_id: str) -> bool:
        return evaluation_id in self._ids

    def __contains__(self, evaluation_id: object) -> bool:
        return evaluation_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add_all(self, evaluation_ids: Iterable[str]) -> bool:
        """Agrega ids; retorna True si el set crecio."""
        before = len(self._ids)
        self._ids.update(evaluation_ids)
        return len(self._ids) > before

    def persist(self) -> None:
        """
        Escribe el set completo via temp-file + os.replace.

        Cualquier fallo de I/O es fatal: si el checkpoint no se puede guardar,
        seguir enviando documentos no deja rastro del progreso.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(sorted(self._ids), ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise CheckpointError(
                f"No se pudo persistir el checkpoint: {e}", path=str(self._path)
            ) from e

        logger.debug(f"Checkpoint persistido: {len(self._ids)} ids")
