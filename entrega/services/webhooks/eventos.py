"""
Eventos tipados enviados ao webhook.

Envelope: {"event": <tipo>, "timestamp": <ISO-8601 UTC>, "data": {...}}
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Union

from entrega.core.relogio import Relogio, relogio_sistema
from entrega.services.webhooks.gerenciador import GerenciadorNotificacoes

logger = logging.getLogger(__name__)

MAX_HISTORICO = 100


class TipoEvento(str, Enum):
    MENSAGEM_ENVIADA = "message.sent"
    MENSAGEM_FALHOU = "message.failed"
    MENSAGEM_MORTA = "message.dead"
    CONEXAO_ABERTA = "connection.open"
    CONEXAO_FECHADA = "connection.close"
    ALERTA_RISCO = "antiban.warning"
    HIBERNACAO = "antiban.hibernation"
    RATE_LIMIT = "antiban.rate_limit"


TiposEvento = Union[TipoEvento, Iterable[TipoEvento]]


def _como_lista(tipos: TiposEvento) -> list[TipoEvento]:
    if isinstance(tipos, TipoEvento):
        return [tipos]
    return list(tipos)


class EmissorEventos:
    """Monta envelopes, filtra por assinatura e entrega via GerenciadorNotificacoes."""

    def __init__(
        self,
        gerenciador: GerenciadorNotificacoes,
        assinaturas: Optional[Iterable[TipoEvento]] = None,
        habilitado: bool = True,
        relogio: Relogio = relogio_sistema,
    ):
        self.gerenciador = gerenciador
        self.habilitado = habilitado
        self._relogio = relogio
        self.assinaturas: set[TipoEvento] = set(assinaturas if assinaturas is not None else TipoEvento)
        self.historico: list[dict] = []
        self.stats = {
            "total_eventos": 0,
            "por_tipo": {},
            "ultimo_evento_em": None,
            "erros": 0,
        }

    def inscrever(self, tipos: TiposEvento):
        self.assinaturas.update(_como_lista(tipos))

    def cancelar_inscricao(self, tipos: TiposEvento):
        self.assinaturas.difference_update(_como_lista(tipos))

    def inscrito(self, tipo: TipoEvento) -> bool:
        return tipo in self.assinaturas

    def montar_evento(self, tipo: TipoEvento, dados: dict) -> dict:
        return {
            "event": tipo.value,
            "timestamp": datetime.fromtimestamp(self._relogio(), tz=timezone.utc).isoformat(),
            "data": dados,
        }

    async def emitir(self, tipo: TipoEvento, dados: dict) -> dict:
        """
        Emite evento para o webhook.

        Returns:
            {"enviado": bool, "motivo": str|None, "enfileirado": bool}
        """
        if not self.habilitado or not self.gerenciador.habilitado:
            return {"enviado": False, "motivo": "desabilitado", "enfileirado": False}

        if not self.inscrito(tipo):
            return {"enviado": False, "motivo": "nao_inscrito", "enfileirado": False}

        evento = self.montar_evento(tipo, dados)
        self._registrar_historico(evento)

        resultado = await self.gerenciador.enviar(evento)

        self.stats["total_eventos"] += 1
        self.stats["por_tipo"][tipo.value] = self.stats["por_tipo"].get(tipo.value, 0) + 1
        self.stats["ultimo_evento_em"] = self._relogio()
        if not resultado.sucesso and not resultado.enfileirada:
            self.stats["erros"] += 1

        return {
            "enviado": resultado.sucesso,
            "motivo": resultado.motivo,
            "enfileirado": resultado.enfileirada,
        }

    def _registrar_historico(self, evento: dict):
        self.historico.append({**evento, "registrado_em": self._relogio()})
        if len(self.historico) > MAX_HISTORICO:
            del self.historico[: len(self.historico) - MAX_HISTORICO]

    def estatisticas(self) -> dict:
        return {
            **self.stats,
            "por_tipo": dict(self.stats["por_tipo"]),
            "assinaturas": sorted(t.value for t in self.assinaturas),
            "tamanho_historico": len(self.historico),
        }
