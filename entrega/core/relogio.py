"""
Relógio injetável.

Todos os componentes recebem `relogio: Relogio` (epoch em segundos) para que
janelas de rate limit, warmup e risco possam ser testadas com tempo simulado.
"""
import time
from datetime import date, datetime
from typing import Callable

Relogio = Callable[[], float]

HORA = 3600.0
DIA = 86400.0


def relogio_sistema() -> float:
    """Epoch atual em segundos."""
    return time.time()


def data_local(timestamp: float) -> date:
    """Data de calendário (fuso local) de um timestamp."""
    return datetime.fromtimestamp(timestamp).date()


def mesmo_dia(ts_a: float, ts_b: float) -> bool:
    """True se os dois timestamps caem no mesmo dia de calendário."""
    return data_local(ts_a) == data_local(ts_b)
