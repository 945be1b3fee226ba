"""
Modificadores de ritmo aplicados sobre os limites e delays do governador.

- PadraoCalendario: fim de semana e feriados reduzem volume e alongam delays
- RampaAtividade: após um período parado, o volume volta gradualmente
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from entrega.core.relogio import Relogio, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro

logger = logging.getLogger(__name__)

CHAVE_RAMPA = "activity-ramp-state"

DIAS_SEMANA = ("segunda", "terca", "quarta", "quinta", "sexta", "sabado", "domingo")


def _ajustar(base: int, multiplicador: float) -> int:
    # Nunca zera um limite
    return max(1, int(base * multiplicador))


@dataclass
class CalendarioConfig:
    dias_fim_de_semana: tuple[int, ...] = (5, 6)   # datetime.weekday(): sábado, domingo
    feriados: tuple[str, ...] = ("01-01", "12-25", "12-31")  # MM-DD
    multiplicador_fim_de_semana: float = 0.6
    multiplicador_feriado: float = 0.4
    delay_fim_de_semana: float = 1.5
    delay_feriado: float = 2.0


class PadraoCalendario:
    """Ajustes pelo dia de calendário (fuso local)."""

    def __init__(self, config: Optional[CalendarioConfig] = None, relogio: Relogio = relogio_sistema):
        self.config = config or CalendarioConfig()
        self._relogio = relogio

    def _data(self, agora: Optional[float]) -> datetime:
        return datetime.fromtimestamp(self._relogio() if agora is None else agora)

    def fim_de_semana(self, agora: Optional[float] = None) -> bool:
        return self._data(agora).weekday() in self.config.dias_fim_de_semana

    def feriado(self, agora: Optional[float] = None) -> bool:
        return self._data(agora).strftime("%m-%d") in self.config.feriados

    def multiplicador_taxa(self, agora: Optional[float] = None) -> float:
        if self.feriado(agora):
            return self.config.multiplicador_feriado
        if self.fim_de_semana(agora):
            return self.config.multiplicador_fim_de_semana
        return 1.0

    def multiplicador_delay(self, agora: Optional[float] = None) -> float:
        if self.feriado(agora):
            return self.config.delay_feriado
        if self.fim_de_semana(agora):
            return self.config.delay_fim_de_semana
        return 1.0

    def ajustar_limite(self, base: int, agora: Optional[float] = None) -> int:
        return _ajustar(base, self.multiplicador_taxa(agora))

    def ajustar_delay(self, base: float, agora: Optional[float] = None) -> float:
        return base * self.multiplicador_delay(agora)

    def status(self, agora: Optional[float] = None) -> dict:
        return {
            "fim_de_semana": self.fim_de_semana(agora),
            "feriado": self.feriado(agora),
            "multiplicador_taxa": self.multiplicador_taxa(agora),
            "multiplicador_delay": self.multiplicador_delay(agora),
            "dia_semana": DIAS_SEMANA[self._data(agora).weekday()],
        }


@dataclass
class RampaConfig:
    limiar_inatividade_segundos: float = 3600.0   # 1h parado aciona a rampa
    duracao_rampa_segundos: float = 1800.0        # 30min até a velocidade total
    multiplicador_minimo: float = 0.25


class RampaAtividade:
    """
    Retomada gradual após inatividade.

    Parado há mais que o limiar: multiplicador mínimo. Ao retomar, sobe
    linearmente até 1.0 ao longo de duracao_rampa_segundos.
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        config: Optional[RampaConfig] = None,
        relogio: Relogio = relogio_sistema,
    ):
        self._store = store
        self._relogio = relogio
        self.config = config or RampaConfig()
        self.ultima_atividade = relogio()
        self.inicio_rampa: Optional[float] = None
        self._carregar()

    def registrar_atividade(self, agora: Optional[float] = None):
        agora = self._relogio() if agora is None else agora
        if agora - self.ultima_atividade >= self.config.limiar_inatividade_segundos:
            logger.info(
                f"[Rampa] Retomando após {int((agora - self.ultima_atividade) // 60)} min parado"
            )
            self.inicio_rampa = agora
        self.ultima_atividade = agora
        self._salvar()

    def multiplicador_taxa(self, agora: Optional[float] = None) -> float:
        agora = self._relogio() if agora is None else agora
        cfg = self.config

        if agora - self.ultima_atividade >= cfg.limiar_inatividade_segundos:
            return cfg.multiplicador_minimo

        if self.inicio_rampa is None:
            return 1.0

        progresso = min((agora - self.inicio_rampa) / cfg.duracao_rampa_segundos, 1.0)
        if progresso >= 1.0:
            return 1.0
        return cfg.multiplicador_minimo + (1.0 - cfg.multiplicador_minimo) * progresso

    def multiplicador_delay(self, agora: Optional[float] = None) -> float:
        """Delays crescem na proporção inversa da taxa: 1 + (1 - m)."""
        return 1.0 + (1.0 - self.multiplicador_taxa(agora))

    def ajustar_limite(self, base: int, agora: Optional[float] = None) -> int:
        return _ajustar(base, self.multiplicador_taxa(agora))

    def ajustar_delay(self, base: float, agora: Optional[float] = None) -> float:
        return base * self.multiplicador_delay(agora)

    def status(self, agora: Optional[float] = None) -> dict:
        agora = self._relogio() if agora is None else agora
        multiplicador = self.multiplicador_taxa(agora)
        return {
            "ultima_atividade": self.ultima_atividade,
            "minutos_parado": int((agora - self.ultima_atividade) // 60),
            "multiplicador_taxa": round(multiplicador, 3),
            "em_rampa": multiplicador < 1.0,
        }

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_RAMPA)
        if not dados:
            return
        self.ultima_atividade = dados.get("ultima_atividade") or self.ultima_atividade
        self.inicio_rampa = dados.get("inicio_rampa")

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_RAMPA, {
            "ultima_atividade": self.ultima_atividade,
            "inicio_rampa": self.inicio_rampa,
        }, self._relogio())
