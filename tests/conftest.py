"""
Configuración de fixtures para pytest.
"""
import pytest

from tests.fakes import FakeElasticsearch


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    return FakeElasticsearch()
