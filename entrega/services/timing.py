"""
Serviço de timing para cadência de envio.

Funções puras que geram delays com variação (jitter) a partir de um valor
base. Nenhum efeito colateral: com um random.Random semeado o resultado é
determinístico.

Todos os valores em segundos.
"""
import random
from dataclasses import dataclass
from typing import Optional

# Digitação: ~50ms por caractere
SEGUNDOS_POR_CARACTERE = 0.05
# Leitura: ~300ms por palavra (200-250 palavras/minuto)
SEGUNDOS_POR_PALAVRA = 0.3
LEITURA_MIN = 1.0
LEITURA_MAX = 8.0
REFLEXAO_MAX = 5.0


def jitter(base: float, variancia: float = 0.3, rng: Optional[random.Random] = None) -> float:
    """
    Valor uniforme em [base*(1-v), base*(1+v)].

    Args:
        base: Valor central
        variancia: Fração de variação (0.3 = ±30%)
        rng: Fonte aleatória (default: módulo random)
    """
    rng = rng or random
    return rng.uniform(base * (1 - variancia), base * (1 + variancia))


def calcular_tempo_digitacao(
    texto: str,
    minimo: float = 1.0,
    maximo: float = 6.0,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Tempo de digitação proporcional ao tamanho do texto.

    Returns:
        Segundos, limitado a [minimo, maximo]
    """
    por_caractere = jitter(SEGUNDOS_POR_CARACTERE, 0.4, rng)
    return min(max(len(texto) * por_caractere, minimo), maximo)


def calcular_delay_leitura(texto: str, rng: Optional[random.Random] = None) -> float:
    """
    Tempo de leitura de uma mensagem recebida.

    Fatores:
    - Número de palavras (limitado a 1-8s)
    - Pergunta (+~0.5s)
    - Texto longo, >200 caracteres (+~1s)
    """
    if not texto:
        return jitter(1.0, 0.5, rng)

    palavras = len(texto.split())
    leitura = palavras * jitter(SEGUNDOS_POR_PALAVRA, 0.3, rng)
    leitura = min(max(leitura, LEITURA_MIN), LEITURA_MAX)

    if "?" in texto:
        leitura += jitter(0.5, 0.5, rng)

    if len(texto) > 200:
        leitura += jitter(1.0, 0.5, rng)

    return leitura


def calcular_delay_reflexao(
    recebida: Optional[str],
    resposta: Optional[str],
    rng: Optional[random.Random] = None,
) -> float:
    """Pausa entre ler e começar a digitar. Máximo 5s."""
    reflexao = jitter(1.5, 0.5, rng)

    if resposta and len(resposta) > 100:
        reflexao += jitter(1.0, 0.5, rng)

    if recebida and "?" in recebida:
        reflexao += jitter(0.8, 0.5, rng)

    return min(reflexao, REFLEXAO_MAX)


@dataclass(frozen=True)
class TemposInteracao:
    leitura: float
    reflexao: float
    digitacao: float

    @property
    def total(self) -> float:
        return self.leitura + self.reflexao + self.digitacao


def simular_interacao(
    recebida: Optional[str],
    resposta: Optional[str],
    rng: Optional[random.Random] = None,
) -> TemposInteracao:
    """Todos os delays de uma resposta: ler, pensar, digitar."""
    return TemposInteracao(
        leitura=calcular_delay_leitura(recebida or "", rng),
        reflexao=calcular_delay_reflexao(recebida, resposta, rng),
        digitacao=calcular_tempo_digitacao(resposta or "", rng=rng),
    )
