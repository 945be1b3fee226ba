"""
Tipos compartilhados entre governador, fila e motor.
"""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


class CodigoNegacao(str, Enum):
    """Motivo estruturado de uma negação de envio."""
    HIBERNACAO = "hibernacao"
    RISCO_CRITICO = "risco_critico"
    WARMUP_CONTATO = "warmup_contato"
    LIMITE_HORA = "limite_hora"
    LIMITE_DIA = "limite_dia"
    INTERVALO_MINIMO = "intervalo_minimo"

    @property
    def por_contato(self) -> bool:
        """Negação que vale só para o destino avaliado."""
        return self == CodigoNegacao.WARMUP_CONTATO


@dataclass(frozen=True)
class DecisaoEnvio:
    """
    Veredito de admissão para um envio candidato.

    Negar não é erro: é um "ainda não", com motivo e dica de espera.
    """
    permitido: bool
    motivo: Optional[str] = None
    espera_segundos: Optional[float] = None
    codigo: Optional[CodigoNegacao] = None

    @classmethod
    def ok(cls) -> "DecisaoEnvio":
        return cls(permitido=True)

    @classmethod
    def negar(
        cls,
        codigo: CodigoNegacao,
        motivo: str,
        espera_segundos: Optional[float] = None,
    ) -> "DecisaoEnvio":
        return cls(
            permitido=False,
            motivo=motivo,
            espera_segundos=espera_segundos,
            codigo=codigo,
        )

    def to_dict(self) -> dict:
        dados = asdict(self)
        dados["codigo"] = self.codigo.value if self.codigo else None
        return dados
