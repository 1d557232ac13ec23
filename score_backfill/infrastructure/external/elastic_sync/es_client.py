"""
Construccion del cliente Elasticsearch desde Settings.
"""
from __future__ import annotations

from elasticsearch import Elasticsearch

from score_backfill.core.config import Settings


def build_es_client(settings: Settings) -> Elasticsearch:
    """
    Cliente con basic auth (si hay usuario) y timeout largo por request.

    Los reintentos por conflicto de version los resuelve Elasticsearch
    (retry_on_conflict en cada operacion), no el cliente.
    """
    kwargs = {"request_timeout": settings.ELASTIC_REQUEST_TIMEOUT}
    # Las opciones TLS solo aplican (y solo se aceptan) con nodos https
    if settings.ELASTIC_URL.startswith("https://"):
        kwargs["verify_certs"] = settings.ELASTIC_VERIFY_CERTS
    if settings.ELASTIC_USER:
        kwargs["basic_auth"] = (settings.ELASTIC_USER, settings.ELASTIC_PASS)
    return Elasticsearch(settings.ELASTIC_URL, **kwargs)
