"""
Governador de envio: decisão única de admissão para cada envio candidato.

Ordem de avaliação (a primeira negação vence):
1. Risco: hibernação ou nível CRITICAL
2. Warmup do contato
3. Orçamento hora/dia (limites reduzidos pelos modificadores)
4. Intervalo mínimo desde o último envio (alongado pelos modificadores)
"""
import logging
from typing import Optional

from entrega.core.relogio import Relogio, relogio_sistema
from entrega.services.modificadores import PadraoCalendario, RampaAtividade
from entrega.services.rate_limiter import OrcamentoTaxa
from entrega.services.risco import MonitorRisco
from entrega.services.tipos import DecisaoEnvio
from entrega.services.warmup_contato import WarmupContatos

logger = logging.getLogger(__name__)


class GovernadorEnvio:
    """Combina orçamento, warmup, risco e modificadores."""

    def __init__(
        self,
        orcamento: OrcamentoTaxa,
        warmup: WarmupContatos,
        risco: MonitorRisco,
        rampa: Optional[RampaAtividade] = None,
        calendario: Optional[PadraoCalendario] = None,
        relogio: Relogio = relogio_sistema,
    ):
        self.orcamento = orcamento
        self.warmup = warmup
        self.risco = risco
        self.rampa = rampa
        self.calendario = calendario
        self._relogio = relogio

    # Modificadores

    def limites_efetivos(self, agora: Optional[float] = None) -> tuple[int, int]:
        """(limite_hora, limite_dia) do tier após calendário e rampa."""
        agora = self._relogio() if agora is None else agora
        limites = self.orcamento.limites
        hora, dia = limites.limite_hora, limites.limite_dia

        if self.rampa:
            hora = self.rampa.ajustar_limite(hora, agora)
            dia = self.rampa.ajustar_limite(dia, agora)
        if self.calendario:
            hora = self.calendario.ajustar_limite(hora, agora)
            dia = self.calendario.ajustar_limite(dia, agora)

        return hora, dia

    def multiplicador_delay(self, agora: Optional[float] = None) -> float:
        agora = self._relogio() if agora is None else agora
        multiplicador = 1.0
        if self.rampa:
            multiplicador *= self.rampa.multiplicador_delay(agora)
        if self.calendario:
            multiplicador *= self.calendario.multiplicador_delay(agora)
        return multiplicador

    def ajustar_delay(self, base: float, agora: Optional[float] = None) -> float:
        """Aplica os modificadores sobre um delay do timing."""
        return base * self.multiplicador_delay(agora)

    # Admissão

    def pode_enviar(self, destino: str, agora: Optional[float] = None) -> DecisaoEnvio:
        """
        Decide se um envio para `destino` pode acontecer agora.

        Args:
            destino: Identificador do destinatário
            agora: Timestamp (default: relógio)

        Returns:
            DecisaoEnvio; negações trazem código, motivo e, quando aplicável,
            espera_segundos até a condição se resolver
        """
        agora = self._relogio() if agora is None else agora

        decisao = self.risco.verificar()
        if not decisao.permitido:
            return decisao

        decisao = self.warmup.verificar(destino, agora)
        if not decisao.permitido:
            return decisao

        limite_hora, limite_dia = self.limites_efetivos(agora)
        decisao = self.orcamento.verificar_limites(agora, limite_hora, limite_dia)
        if not decisao.permitido:
            return decisao

        intervalo = self.ajustar_delay(self.orcamento.limites.intervalo_min_segundos, agora)
        return self.orcamento.verificar_intervalo(agora, intervalo)

    def registrar_envio(self, destino: str, agora: Optional[float] = None):
        """Contabiliza um envio aprovado e realizado."""
        agora = self._relogio() if agora is None else agora
        self.orcamento.registrar_envio(agora)
        self.warmup.registrar(destino, agora)
        if self.rampa:
            self.rampa.registrar_atividade(agora)

    def estatisticas_taxa(self, agora: Optional[float] = None) -> dict:
        agora = self._relogio() if agora is None else agora
        stats = self.orcamento.estatisticas(agora)
        limite_hora, limite_dia = self.limites_efetivos(agora)
        stats["limite_hora_efetivo"] = limite_hora
        stats["limite_dia_efetivo"] = limite_dia
        stats["multiplicador_delay"] = round(self.multiplicador_delay(agora), 3)
        if self.calendario:
            stats["calendario"] = self.calendario.status(agora)
        if self.rampa:
            stats["rampa"] = self.rampa.status(agora)
        return stats
