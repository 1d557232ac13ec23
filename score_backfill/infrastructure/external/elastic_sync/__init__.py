"""
Integracion con Elasticsearch: cliente y envio por lotes (_bulk).
"""
