"""
Backfill one-way de scoreDetails: PostgreSQL -> Elasticsearch.

Este paquete está diseñado para ejecutarse como job puntual,
no como un proceso de larga vida.

Objetivos de diseño:
- Reanudable: un checkpoint en archivo registra los ids confirmados.
- Idempotente: relanzar no reenvía lo ya migrado y reintenta lo fallido.
- Memoria acotada: lectura por cursor en lotes y envío en bulks de tamaño fijo.
- Fallos parciales: cada item del bulk se concilia por separado.
"""

__version__ = "1.0.0"
