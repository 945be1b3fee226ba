"""
Reconexão ao transporte com backoff exponencial e jitter.

Tentativas em período fixo são uma assinatura de bot; aqui o delay cresce
exponencialmente (1s, 2s, 4s, 8s...) com 30-50% de jitter aleatório.

Estados:
- armado: proximo_delay() devolve um delay
- esgotado: proximo_delay() devolve sinal de desistência até reset()
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from entrega.core.tasks import TarefaAgendada, agendar_com_delay

logger = logging.getLogger(__name__)


@dataclass
class ReconexaoConfig:
    base_segundos: float = 1.0
    max_segundos: float = 300.0       # 5 minutos
    max_tentativas: int = 10
    jitter_min: float = 0.3
    jitter_max: float = 0.5


@dataclass(frozen=True)
class ProximoDelay:
    delay: float
    tentativa: int
    desistir: bool = False


class GerenciadorReconexao:
    """Gera a sequência de delays de reconexão."""

    def __init__(
        self,
        config: Optional[ReconexaoConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or ReconexaoConfig()
        self._rng = rng or random.Random()
        self.tentativas = 0

    @property
    def esgotado(self) -> bool:
        return self.tentativas >= self.config.max_tentativas

    def componente_exponencial(self, tentativa: int) -> float:
        """min(base * 2^tentativa, teto), sem jitter."""
        return min(self.config.base_segundos * (2 ** tentativa), self.config.max_segundos)

    def proximo_delay(self) -> ProximoDelay:
        """
        Calcula próximo delay e incrementa tentativas.

        O jitter pode ser positivo (+j) ou negativo (-j/2), então um delay pode
        sair menor que o anterior mesmo com a base exponencial crescendo.
        Nunca fica abaixo de base_segundos.
        """
        if self.esgotado:
            return ProximoDelay(delay=0.0, tentativa=self.tentativas, desistir=True)

        exponencial = self.componente_exponencial(self.tentativas)

        fracao = self._rng.uniform(self.config.jitter_min, self.config.jitter_max)
        jitter = exponencial * fracao

        if self._rng.random() > 0.5:
            delay = exponencial + jitter
        else:
            delay = exponencial - jitter * 0.5

        self.tentativas += 1

        return ProximoDelay(
            delay=max(delay, self.config.base_segundos),
            tentativa=self.tentativas,
        )

    def reset(self):
        """Chamar somente após conexão confirmada."""
        self.tentativas = 0

    def estado(self) -> dict:
        return {
            "tentativas": self.tentativas,
            "max_tentativas": self.config.max_tentativas,
            "vai_desistir": self.esgotado,
        }


class AgendadorReconexao:
    """
    Agenda reconexões após eventos de desconexão.

    Nunca há mais de uma tentativa pendente: uma nova desconexão enquanto
    outra reconexão aguarda é ignorada.
    """

    def __init__(
        self,
        gerenciador: GerenciadorReconexao,
        conectar: Callable[[], Awaitable[Any]],
        ao_desistir: Optional[Callable[[int], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.gerenciador = gerenciador
        self._conectar = conectar
        self._ao_desistir = ao_desistir
        self._sleep = sleep
        self._tarefa: Optional[TarefaAgendada] = None
        self.desistiu = False

    @property
    def pendente(self) -> bool:
        return self._tarefa is not None and self._tarefa.ativa

    def ao_desconectar(self, motivo: Any = None) -> Optional[ProximoDelay]:
        """
        Trata evento de desconexão do transporte.

        Returns:
            ProximoDelay agendado (ou de desistência), None se já havia tentativa pendente
        """
        if self.pendente:
            logger.debug(f"[Reconexao] Desconexão ({motivo}) ignorada: já há tentativa agendada")
            return None

        proximo = self.gerenciador.proximo_delay()

        if proximo.desistir:
            self.desistiu = True
            logger.error(
                f"[Reconexao] Desistindo após {proximo.tentativa} tentativas "
                f"(motivo: {motivo}). Intervenção do operador necessária."
            )
            if self._ao_desistir:
                self._ao_desistir(proximo.tentativa)
            return proximo

        logger.info(
            f"[Reconexao] Tentativa {proximo.tentativa}/{self.gerenciador.config.max_tentativas} "
            f"em {proximo.delay:.1f}s (motivo: {motivo})"
        )
        self._tarefa = agendar_com_delay(
            self._tentar_conectar,
            proximo.delay,
            name="reconexao",
            sleep=self._sleep,
        )
        return proximo

    async def _tentar_conectar(self):
        try:
            await self._conectar()
        except Exception as e:
            logger.warning(f"[Reconexao] Falha ao conectar: {e}")
            self._tarefa = None
            self.ao_desconectar(f"falha_conexao: {e}")
            return

        self._tarefa = None
        self.ao_conectado()

    def ao_conectado(self):
        """Conexão confirmada: zera tentativas."""
        if self.gerenciador.tentativas:
            logger.info(f"[Reconexao] Conectado após {self.gerenciador.tentativas} tentativa(s)")
        self.gerenciador.reset()
        self.desistiu = False

    def cancelar(self) -> bool:
        if self._tarefa is None:
            return False
        cancelou = self._tarefa.cancelar()
        self._tarefa = None
        return cancelou
