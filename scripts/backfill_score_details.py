"""
Runner del backfill de scoreDetails (PostgreSQL -> Elasticsearch).

Ejecución:
  python scripts/backfill_score_details.py --help
"""

from __future__ import annotations

import sys
from pathlib import Path

from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin instalar el paquete.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

# Cargar variables desde .env si existe (raiz del repo).
load_dotenv(_REPO_ROOT / ".env", override=False)

from score_backfill.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
