"""
Interface abstrata do transporte (cliente da rede de chat).

O motor não conhece detalhes do protocolo: só "enviou", "falhou(motivo)"
ou "desconectou(motivo)". Falhas de envio devem ser sinalizadas com
TransporteError (inalcancavel / limite_taxa).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

# Estados de presença usados pela simulação de digitação
PRESENCA_DIGITANDO = "composing"
PRESENCA_PAUSADO = "paused"


class Transporte(ABC):
    """
    Contrato consumido pelo motor.

    Eventos de desconexão devem ser repassados para
    MotorEntrega.ao_desconectar(motivo).
    """

    @abstractmethod
    async def conectar(self) -> None:
        """
        Estabelece a conexão.

        Raises:
            Exception: Se não conectar (o agendador de reconexão tenta de novo)
        """

    @abstractmethod
    async def enviar_mensagem(
        self,
        destino: str,
        conteudo: str,
        referencia_resposta: Optional[str] = None,
    ) -> Any:
        """
        Envia mensagem de texto.

        Returns:
            Handle de entrega do transporte (opaco para o motor)

        Raises:
            TransporteError: Se o envio falhar
        """

    @abstractmethod
    async def inscrever_presenca(self, destino: str) -> None:
        """Inscreve para receber presença do destino."""

    @abstractmethod
    async def atualizar_presenca(self, destino: str, estado: str) -> None:
        """Publica presença ('composing', 'paused') para o destino."""
