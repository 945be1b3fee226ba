"""
Estatísticas diárias de atividade (enviadas x recebidas).

Conta que só envia e nunca recebe resposta é sinal de spam.
"""
import logging
from typing import Optional

from entrega.core.relogio import Relogio, data_local, mesmo_dia, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "activity-stats"

# Abaixo disso (com volume mínimo) não é seguro seguir enviando
RAZAO_RESPOSTA_MINIMA = 0.3
ENVIOS_MINIMOS_AVALIACAO = 10


class RastreadorAtividade:
    """Contadores do dia corrente; zera na virada do dia."""

    def __init__(self, store: Optional[SnapshotStore] = None, relogio: Relogio = relogio_sistema):
        self._store = store
        self._relogio = relogio
        self._zerar(relogio())
        self._carregar()

    def _zerar(self, agora: float):
        self.dia = agora
        self.enviadas = 0
        self.recebidas = 0
        self.destinatarios: set[str] = set()
        self.remetentes: set[str] = set()

    def _virar_dia(self, agora: float):
        if not mesmo_dia(self.dia, agora):
            logger.debug(f"[Atividade] Novo dia: {data_local(agora).isoformat()}")
            self._zerar(agora)

    def registrar_envio(self, destino: str):
        self._virar_dia(self._relogio())
        self.enviadas += 1
        self.destinatarios.add(destino)
        self._salvar()

    def registrar_recebido(self, remetente: str):
        self._virar_dia(self._relogio())
        self.recebidas += 1
        self.remetentes.add(remetente)
        self._salvar()

    def razao_resposta(self) -> float:
        self._virar_dia(self._relogio())
        if self.enviadas == 0:
            return 1.0
        return self.recebidas / self.enviadas

    def esta_seguro(self) -> tuple[bool, Optional[str]]:
        """
        Returns:
            (seguro, motivo)
        """
        razao = self.razao_resposta()
        if self.enviadas > ENVIOS_MINIMOS_AVALIACAO and razao < RAZAO_RESPOSTA_MINIMA:
            return False, f"Razão de resposta baixa ({round(razao * 100)}%). Aguardar mais respostas."
        return True, None

    def estatisticas(self) -> dict:
        razao = self.razao_resposta()
        return {
            "data": data_local(self.dia).isoformat(),
            "enviadas": self.enviadas,
            "recebidas": self.recebidas,
            "razao_resposta": round(razao, 3),
            "destinatarios_unicos": len(self.destinatarios),
            "remetentes_unicos": len(self.remetentes),
        }

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        # Só as estatísticas de hoje
        if not mesmo_dia(dados.get("saved_at", 0), self._relogio()):
            return

        self.enviadas = dados.get("enviadas", 0)
        self.recebidas = dados.get("recebidas", 0)
        self.destinatarios = set(dados.get("destinatarios") or [])
        self.remetentes = set(dados.get("remetentes") or [])

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "enviadas": self.enviadas,
            "recebidas": self.recebidas,
            "destinatarios": sorted(self.destinatarios),
            "remetentes": sorted(self.remetentes),
        }, self._relogio())
