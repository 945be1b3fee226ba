"""
Exceptions customizadas do motor de entrega.

Negações de admissão NÃO são exceções: são retornadas como DecisaoEnvio.
"""
from typing import Optional


class EntregaException(Exception):
    """Base exception para todos os erros do sistema."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class PersistenciaError(EntregaException):
    """Erro ao ler ou gravar snapshot (arquivo, Redis)."""

    def __init__(
        self,
        message: str,
        chave: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {"chave": chave} if chave else {}
        super().__init__(message, details, original_error)


class TransporteError(EntregaException):
    """
    Falha reportada pelo transporte ao enviar mensagem.

    Attributes:
        inalcancavel: Destino confirmado inalcançável (ex: bloqueou a conta).
            Não vale a pena tentar de novo.
        limite_taxa: A rede sinalizou rate limit.
    """

    def __init__(
        self,
        message: str,
        destino: Optional[str] = None,
        inalcancavel: bool = False,
        limite_taxa: bool = False,
        original_error: Optional[Exception] = None
    ):
        self.destino = destino
        self.inalcancavel = inalcancavel
        self.limite_taxa = limite_taxa
        details = {}
        if destino:
            details["destino"] = destino[:8] + "..."
        if inalcancavel:
            details["inalcancavel"] = True
        if limite_taxa:
            details["limite_taxa"] = True
        super().__init__(message, details, original_error)

    @property
    def retentavel(self) -> bool:
        return not self.inalcancavel


class ConfiguracaoError(EntregaException):
    """Erro de configuracao do sistema."""
    pass
