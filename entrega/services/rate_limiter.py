"""
Rate limiter por maturidade da conta.

Limites por idade da conta:
- Semana 1: 5/hora, 15/dia, 3min entre envios (conta nova)
- Semana 2-4: 15/hora, 40/dia, 90s (aquecendo)
- Mês 2+: 30/hora, 150/dia, 30s (madura)

Janelas: a contagem por hora zera 1h após o início da janela, a diária após 24h.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from entrega.core.relogio import DIA, HORA, Relogio, mesmo_dia, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.services.tipos import CodigoNegacao, DecisaoEnvio

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "rate-limit-stats"


@dataclass(frozen=True)
class LimitesTier:
    nome: str
    limite_hora: int
    limite_dia: int
    intervalo_min_segundos: float
    descricao: str


TIER_NOVO = LimitesTier("novo", 5, 15, 180.0, "Conta nova (semana 1)")
TIER_AQUECENDO = LimitesTier("aquecendo", 15, 40, 90.0, "Conta aquecendo (semanas 2-4)")
TIER_MADURO = LimitesTier("maduro", 30, 150, 30.0, "Conta madura (mês 2+)")

# Fronteiras em semanas: <= 1 novo, <= 4 aquecendo, resto maduro
FRONTEIRA_NOVO = 1
FRONTEIRA_AQUECENDO = 4


def obter_limites(semanas: float) -> LimitesTier:
    """Tier de limites para a idade da conta em semanas."""
    if semanas <= FRONTEIRA_NOVO:
        return TIER_NOVO
    if semanas <= FRONTEIRA_AQUECENDO:
        return TIER_AQUECENDO
    return TIER_MADURO


class OrcamentoTaxa:
    """
    Orçamento de envios por hora/dia da conta.

    Invariante: no momento em que um envio é aprovado, as contagens estão
    abaixo do limite do tier.
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        semanas_conta: float = 1,
        relogio: Relogio = relogio_sistema,
    ):
        self._store = store
        self._relogio = relogio
        self.semanas_conta = semanas_conta

        agora = relogio()
        self.contagem_hora = 0
        self.contagem_dia = 0
        self.inicio_hora = agora
        self.inicio_dia = agora
        self.ultimo_envio: Optional[float] = None

        self._carregar()

    @property
    def limites(self) -> LimitesTier:
        return obter_limites(self.semanas_conta)

    def _rolar_janelas(self, agora: float):
        if agora - self.inicio_hora >= HORA:
            self.contagem_hora = 0
            self.inicio_hora = agora

        if agora - self.inicio_dia >= DIA:
            self.contagem_dia = 0
            self.inicio_dia = agora

    def verificar_limites(
        self,
        agora: Optional[float] = None,
        limite_hora: Optional[int] = None,
        limite_dia: Optional[int] = None,
    ) -> DecisaoEnvio:
        """
        Verifica limites por hora e por dia.

        Args:
            agora: Timestamp (default: relógio)
            limite_hora: Limite efetivo (default: do tier). Modificadores podem reduzi-lo.
            limite_dia: Idem para o dia.

        Returns:
            DecisaoEnvio com espera_segundos = tempo até a janela zerar
        """
        agora = self._relogio() if agora is None else agora
        self._rolar_janelas(agora)

        limite_hora = self.limites.limite_hora if limite_hora is None else limite_hora
        limite_dia = self.limites.limite_dia if limite_dia is None else limite_dia

        if self.contagem_hora >= limite_hora:
            espera = HORA - (agora - self.inicio_hora)
            return DecisaoEnvio.negar(
                CodigoNegacao.LIMITE_HORA,
                f"Limite por hora atingido ({self.contagem_hora}/{limite_hora}). "
                f"Zera em {int(espera // 60) + 1} min",
                espera_segundos=espera,
            )

        if self.contagem_dia >= limite_dia:
            espera = DIA - (agora - self.inicio_dia)
            return DecisaoEnvio.negar(
                CodigoNegacao.LIMITE_DIA,
                f"Limite por dia atingido ({self.contagem_dia}/{limite_dia}). "
                f"Zera em {int(espera // 3600) + 1}h",
                espera_segundos=espera,
            )

        return DecisaoEnvio.ok()

    def verificar_intervalo(
        self,
        agora: Optional[float] = None,
        intervalo_min: Optional[float] = None,
    ) -> DecisaoEnvio:
        """Verifica espaçamento mínimo desde o último envio."""
        agora = self._relogio() if agora is None else agora
        intervalo_min = self.limites.intervalo_min_segundos if intervalo_min is None else intervalo_min

        if self.ultimo_envio is None:
            return DecisaoEnvio.ok()

        decorrido = agora - self.ultimo_envio
        if decorrido < intervalo_min:
            espera = intervalo_min - decorrido
            return DecisaoEnvio.negar(
                CodigoNegacao.INTERVALO_MINIMO,
                f"Aguardar {int(espera) + 1}s antes de enviar novamente",
                espera_segundos=espera,
            )

        return DecisaoEnvio.ok()

    def registrar_envio(self, agora: Optional[float] = None):
        """Incrementa contadores e marca o horário do envio."""
        agora = self._relogio() if agora is None else agora
        self._rolar_janelas(agora)

        self.contagem_hora += 1
        self.contagem_dia += 1
        self.ultimo_envio = agora
        self._salvar()

    def definir_idade_conta(self, semanas: float):
        tier_anterior = self.limites.nome
        self.semanas_conta = semanas
        if self.limites.nome != tier_anterior:
            logger.info(f"[RateLimit] Tier alterado: {tier_anterior} -> {self.limites.nome}")
        self._salvar()

    def estatisticas(self, agora: Optional[float] = None) -> dict:
        agora = self._relogio() if agora is None else agora
        self._rolar_janelas(agora)
        limites = self.limites
        return {
            "msgs_hora": self.contagem_hora,
            "limite_hora": limites.limite_hora,
            "msgs_dia": self.contagem_dia,
            "limite_dia": limites.limite_dia,
            "intervalo_min_segundos": limites.intervalo_min_segundos,
            "semanas_conta": self.semanas_conta,
            "tier": limites.nome,
            "descricao_tier": limites.descricao,
            "ultimo_envio": self.ultimo_envio,
            "hora_zera_em": max(0.0, HORA - (agora - self.inicio_hora)),
            "dia_zera_em": max(0.0, DIA - (agora - self.inicio_dia)),
        }

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        agora = self._relogio()
        salvo_em = dados.get("saved_at", 0)

        # Contagem diária só vale se o snapshot é de hoje
        if mesmo_dia(salvo_em, agora) and agora - dados.get("inicio_dia", 0) < DIA:
            self.contagem_dia = dados.get("contagem_dia", 0)
            self.inicio_dia = dados.get("inicio_dia", agora)

        # Contagem horária só vale dentro da mesma janela de 1h
        inicio_hora = dados.get("inicio_hora")
        if inicio_hora and agora - inicio_hora < HORA:
            self.contagem_hora = dados.get("contagem_hora", 0)
            self.inicio_hora = inicio_hora

        if dados.get("semanas_conta") is not None:
            self.semanas_conta = dados["semanas_conta"]

        self.ultimo_envio = dados.get("ultimo_envio")

        logger.debug(
            f"[RateLimit] Estado restaurado: {self.contagem_hora}/h, {self.contagem_dia}/dia"
        )

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "contagem_hora": self.contagem_hora,
            "contagem_dia": self.contagem_dia,
            "inicio_hora": self.inicio_hora,
            "inicio_dia": self.inicio_dia,
            "ultimo_envio": self.ultimo_envio,
            "semanas_conta": self.semanas_conta,
        }, self._relogio())
