"""
Configuração global de testes - Fixtures compartilhadas.

Este arquivo contém fixtures reutilizáveis em todos os testes do projeto.

Usage:
    Fixtures aqui definidas são automaticamente disponíveis em todos os testes.
    Para controlar o tempo, use o fixture `relogio` (RelogioFalso) e avance
    manualmente com relogio.avancar(segundos).
"""

import random
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from entrega.core.relogio import DIA, HORA
from entrega.persistencia.memoria import MemoriaSnapshotStore

# Quarta-feira, 13/03/2024 12:00 (hora local): dia útil, sem feriado
INICIO_PADRAO = datetime(2024, 3, 13, 12, 0, 0).timestamp()


# =============================================================================
# RELÓGIO FALSO
# =============================================================================


class RelogioFalso:
    """
    Relógio injetável controlado pelo teste.

    Example:
        relogio = RelogioFalso()
        relogio.avancar(HORA)
        relogio()  # INICIO_PADRAO + 3600
    """

    def __init__(self, inicio: float = INICIO_PADRAO):
        self.agora = inicio

    def __call__(self) -> float:
        return self.agora

    def avancar(self, segundos: float) -> float:
        self.agora += segundos
        return self.agora

    def avancar_horas(self, horas: float) -> float:
        return self.avancar(horas * HORA)

    def avancar_dias(self, dias: float) -> float:
        return self.avancar(dias * DIA)


# =============================================================================
# MOCK FACTORIES
# =============================================================================


def criar_mock_http_response(
    status_code: int = 200,
    json_data: dict[str, Any] | list[Any] | None = None,
    text: str = "",
) -> MagicMock:
    """
    Cria mock de resposta HTTP (httpx.Response).

    Args:
        status_code: HTTP status code
        json_data: Dados JSON a retornar
        text: Texto raw da resposta

    Returns:
        MagicMock simulando httpx.Response
    """
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = json_data if json_data is not None else {}
    mock.text = text
    mock.is_success = 200 <= status_code < 300
    mock.is_error = status_code >= 400
    return mock


def criar_mock_transporte() -> MagicMock:
    """
    Mock do transporte com todos os métodos async.

    Returns:
        MagicMock com conectar/enviar_mensagem/inscrever_presenca/atualizar_presenca
    """
    mock = MagicMock()
    mock.conectar = AsyncMock(return_value=None)
    mock.enviar_mensagem = AsyncMock(return_value={"id": "msg-1"})
    mock.inscrever_presenca = AsyncMock(return_value=None)
    mock.atualizar_presenca = AsyncMock(return_value=None)
    return mock


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def relogio():
    """Relógio falso começando numa quarta-feira ao meio-dia."""
    return RelogioFalso()


@pytest.fixture
def store():
    """Store de snapshots em memória."""
    return MemoriaSnapshotStore()


@pytest.fixture
def rng():
    """Fonte aleatória semeada (resultados determinísticos)."""
    return random.Random(42)


@pytest.fixture
def sem_espera():
    """Substituto de asyncio.sleep que retorna na hora e registra as chamadas."""
    return AsyncMock(return_value=None)


@pytest.fixture
def transporte():
    """Transporte mockado."""
    return criar_mock_transporte()


@pytest.fixture
def mock_http_client():
    """
    Mock do httpx.AsyncClient injetado no gerenciador de notificações.

    Uso:
        def test_webhook(mock_http_client):
            mock_http_client.post.return_value = criar_mock_http_response(500)
    """
    mock_client = AsyncMock()
    mock_client.post.return_value = criar_mock_http_response()
    return mock_client
