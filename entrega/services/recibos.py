"""
Rastreamento de recibos de entrega.

Progressão de uma mensagem enviada: sent (✓) -> delivered (✓✓) -> read (✓✓ azul).
Só avança; recibos fora de ordem são ignorados.

Recibos alimentam o monitor de risco:
- Recibo 'failed' do transporte -> falha de entrega
- Contato com N mensagens sem ✓✓ há mais de 24h -> bloqueio provável
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from entrega.core.relogio import DIA, Relogio, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.services.risco import MonitorRisco

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "block-detector-state"


class StatusRecibo(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


_ORDEM_RECIBO = {
    StatusRecibo.SENT: 0,
    StatusRecibo.DELIVERED: 1,
    StatusRecibo.READ: 2,
}


@dataclass
class RecibosConfig:
    timeout_entrega_segundos: float = 60.0      # sem ✓✓ depois disso: entrega lenta
    timeout_suspeita_segundos: float = 300.0    # sem ✓✓ depois disso: possível bloqueio
    timeout_bloqueio_segundos: float = DIA
    mensagens_sem_entrega_bloqueio: int = 3
    retencao_segundos: float = 2 * DIA
    intervalo_verificacao_segundos: float = 60.0


@dataclass
class MensagemRastreada:
    id: str
    destino: str
    status: StatusRecibo
    enviado_em: float
    entregue_em: Optional[float] = None
    lido_em: Optional[float] = None


@dataclass
class ResultadoRecibo:
    """Resultado da atualização de um recibo."""

    atualizado: bool
    status_anterior: Optional[str] = None
    status_novo: Optional[str] = None
    erro: Optional[str] = None


def normalizar_status(status: str) -> Optional[StatusRecibo]:
    """
    Normaliza o status de recibo vindo do transporte.

    Returns:
        StatusRecibo ou None se não reconhecido
    """
    status_upper = status.upper()

    if status_upper in ("DELIVERY_ACK", "DELIVERED"):
        return StatusRecibo.DELIVERED
    if status_upper in ("READ", "VIEWED", "PLAYED"):
        return StatusRecibo.READ
    if status_upper in ("SENT", "SERVER_ACK", "ACCEPTED"):
        return StatusRecibo.SENT
    if status_upper in ("FAILED", "ERROR"):
        return StatusRecibo.FAILED

    return None


class RastreadorRecibos:
    """
    Recibos de entrega por mensagem e detecção de bloqueio por contato.

    Bloqueios confirmados persistem; mensagens em trânsito não (são sensíveis ao tempo).
    """

    def __init__(
        self,
        risco: MonitorRisco,
        store: Optional[SnapshotStore] = None,
        config: Optional[RecibosConfig] = None,
        relogio: Relogio = relogio_sistema,
    ):
        self.risco = risco
        self._store = store
        self.config = config or RecibosConfig()
        self._relogio = relogio

        self.mensagens: dict[str, MensagemRastreada] = {}
        self.bloqueados: set[str] = set()
        self.stats = {"enviadas": 0, "entregues": 0, "lidas": 0, "falhas": 0}

        self._carregar()

    def registrar_enviado(self, mensagem_id: str, destino: str):
        self.mensagens[mensagem_id] = MensagemRastreada(
            id=mensagem_id,
            destino=destino,
            status=StatusRecibo.SENT,
            enviado_em=self._relogio(),
        )
        self.stats["enviadas"] += 1

    def atualizar_status(self, mensagem_id: str, status: str) -> ResultadoRecibo:
        """
        Aplica um recibo recebido do transporte.

        Args:
            mensagem_id: ID devolvido pelo transporte no envio
            status: Status bruto ('delivered', 'read', 'failed', 'DELIVERY_ACK'...)
        """
        novo = normalizar_status(status)
        if novo is None:
            logger.debug(f"[Recibos] Status ignorado: {status}")
            return ResultadoRecibo(atualizado=False, erro=f"Status não reconhecido: {status}")

        msg = self.mensagens.get(mensagem_id)
        if msg is None:
            return ResultadoRecibo(atualizado=False, erro="Mensagem não rastreada")

        anterior = msg.status
        agora = self._relogio()

        if novo == StatusRecibo.FAILED:
            if anterior != StatusRecibo.SENT:
                return ResultadoRecibo(atualizado=False, status_anterior=anterior.value)
            msg.status = novo
            self.stats["falhas"] += 1
            self.risco.registrar_falha(f"recibo de falha para {mensagem_id}")
            return ResultadoRecibo(atualizado=True, status_anterior=anterior.value, status_novo=novo.value)

        if anterior == StatusRecibo.FAILED or _ORDEM_RECIBO[novo] <= _ORDEM_RECIBO[anterior]:
            return ResultadoRecibo(atualizado=False, status_anterior=anterior.value)

        if msg.entregue_em is None:
            msg.entregue_em = agora
            self.stats["entregues"] += 1
            self._confirmar_entrega(msg.destino)
        if novo == StatusRecibo.READ:
            msg.lido_em = agora
            self.stats["lidas"] += 1

        msg.status = novo
        logger.debug(f"[Recibos] {mensagem_id[:12]}... {anterior.value} -> {novo.value}")
        return ResultadoRecibo(atualizado=True, status_anterior=anterior.value, status_novo=novo.value)

    def _confirmar_entrega(self, destino: str):
        if destino in self.bloqueados:
            self.bloqueados.discard(destino)
            logger.info(f"[Recibos] {destino[:8]}... voltou a receber mensagens")
            self._salvar()

    # Saúde

    def verificar_saude(self) -> dict:
        """Mensagens sem ✓✓: entrega lenta ou possível bloqueio."""
        agora = self._relogio()
        problemas = []

        for msg in self.mensagens.values():
            if msg.status != StatusRecibo.SENT:
                continue
            idade = agora - msg.enviado_em
            if idade >= self.config.timeout_suspeita_segundos:
                tipo = "possivel_bloqueio"
            elif idade > self.config.timeout_entrega_segundos:
                tipo = "entrega_lenta"
            else:
                continue
            problemas.append({"tipo": tipo, "mensagem_id": msg.id, "destino": msg.destino, "idade": idade})

        return {
            "saudavel": not problemas,
            "problemas": problemas,
            "estatisticas": self.estatisticas(),
        }

    def verificar_bloqueios(self) -> list[str]:
        """
        Detecta contatos com mensagens demais sem ✓✓ além do timeout.

        Cada bloqueio novo é registrado uma vez no monitor de risco.

        Returns:
            Destinos detectados nesta verificação
        """
        agora = self._relogio()
        sem_entrega: dict[str, int] = {}
        for msg in self.mensagens.values():
            if msg.status == StatusRecibo.SENT and agora - msg.enviado_em > self.config.timeout_bloqueio_segundos:
                sem_entrega[msg.destino] = sem_entrega.get(msg.destino, 0) + 1

        novos = [
            destino
            for destino, total in sem_entrega.items()
            if total >= self.config.mensagens_sem_entrega_bloqueio and destino not in self.bloqueados
        ]
        for destino in novos:
            self.bloqueados.add(destino)
            logger.warning(f"[Recibos] Provável bloqueio por {destino[:8]}... ({sem_entrega[destino]} sem entrega)")
            self.risco.registrar_bloqueio(destino)

        if novos:
            self._salvar()
        return novos

    def contato_bloqueado(self, destino: str) -> bool:
        return destino in self.bloqueados

    def limpar_antigas(self) -> int:
        agora = self._relogio()
        antes = len(self.mensagens)
        self.mensagens = {
            mid: msg
            for mid, msg in self.mensagens.items()
            if agora - msg.enviado_em <= self.config.retencao_segundos
        }
        return antes - len(self.mensagens)

    async def verificar_periodicamente(self):
        """Passada do timer: detecção de bloqueios e limpeza."""
        self.verificar_bloqueios()
        self.limpar_antigas()

    # Métricas

    def taxa_entrega(self) -> float:
        if self.stats["enviadas"] == 0:
            return 1.0
        return self.stats["entregues"] / self.stats["enviadas"]

    def taxa_leitura(self) -> float:
        if self.stats["entregues"] == 0:
            return 1.0
        return self.stats["lidas"] / self.stats["entregues"]

    def estatisticas(self) -> dict:
        return {
            **self.stats,
            "pendentes": sum(1 for m in self.mensagens.values() if m.status == StatusRecibo.SENT),
            "taxa_entrega": round(self.taxa_entrega() * 100, 1),
            "taxa_leitura": round(self.taxa_leitura() * 100, 1),
            "bloqueados": sorted(self.bloqueados),
        }

    # Persistência

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return
        self.bloqueados = set(dados.get("bloqueados") or [])

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "bloqueados": sorted(self.bloqueados),
        }, self._relogio())
