"""
Webhook Services - Entrega confiável de notificações.

Inclui:
- Retry inline com backoff
- DLQ (Dead Letter Queue) persistida com reprocessamento periódico
- Eventos tipados
"""

from entrega.services.webhooks.dlq import FilaNotificacoesFalhas, JobNotificacao
from entrega.services.webhooks.eventos import EmissorEventos, TipoEvento
from entrega.services.webhooks.gerenciador import (
    GerenciadorNotificacoes,
    NotificacaoConfig,
    ResultadoNotificacao,
    WebhookRetentavelError,
    WebhookTerminalError,
    criar_http_client,
)
from entrega.services.webhooks.retry import retry_with_backoff

__all__ = [
    "FilaNotificacoesFalhas",
    "JobNotificacao",
    "EmissorEventos",
    "TipoEvento",
    "GerenciadorNotificacoes",
    "NotificacaoConfig",
    "ResultadoNotificacao",
    "WebhookRetentavelError",
    "WebhookTerminalError",
    "criar_http_client",
    "retry_with_backoff",
]
