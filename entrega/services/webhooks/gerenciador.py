"""
Entrega de notificações (webhooks) com retry e reprocessamento em background.

Fluxo:
1. enviar(): até max_tentativas inline com backoff exponencial
2. Esgotou: job vai para a DLQ persistida com tentativas == max_tentativas
3. Timer periódico reenvia a DLQ inteira; falhas voltam até o teto absoluto,
   depois são logadas e descartadas

Respostas 4xx (exceto 429) são terminais: não há nova tentativa.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from entrega.core.exceptions import EntregaException
from entrega.core.relogio import Relogio, relogio_sistema
from entrega.core.tasks import TarefaAgendada, agendar_periodica
from entrega.persistencia.base import SnapshotStore
from entrega.services.webhooks.dlq import FilaNotificacoesFalhas
from entrega.services.webhooks.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class WebhookRetentavelError(EntregaException):
    """Falha de rede, 5xx ou 429: vale tentar de novo."""


class WebhookTerminalError(EntregaException):
    """Resposta 4xx (exceto 429): não adianta tentar de novo."""

    def __init__(self, message: str, status: int):
        self.status = status
        super().__init__(message, {"status": status})


@dataclass
class NotificacaoConfig:
    url: str = ""
    segredo: str = ""
    max_tentativas: int = 5                        # tentativas inline
    base_delay_segundos: float = 1.0
    max_delay_segundos: float = 60.0
    intervalo_reprocessamento_segundos: float = 60.0
    teto_tentativas: int = 10                      # teto absoluto (inline + background)
    timeout_segundos: float = 10.0


@dataclass
class ResultadoNotificacao:
    sucesso: bool
    status: Optional[int] = None
    motivo: Optional[str] = None
    enfileirada: bool = False


def criar_http_client(timeout_segundos: float = 10.0) -> httpx.AsyncClient:
    """
    Cliente HTTP para os webhooks.

    Returns:
        httpx.AsyncClient com pooling e HTTP/2
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=timeout_segundos,
            read=timeout_segundos,
            write=timeout_segundos,
            pool=5.0,
        ),
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
            keepalive_expiry=30.0,
        ),
        http2=True,
        headers={"User-Agent": "Entrega-Webhook/1.0"},
        follow_redirects=True,
    )


class GerenciadorNotificacoes:
    """Entrega confiável de notificações para o webhook configurado."""

    def __init__(
        self,
        config: Optional[NotificacaoConfig] = None,
        store: Optional[SnapshotStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        relogio: Relogio = relogio_sistema,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or NotificacaoConfig()
        self._client = http_client
        self._client_proprio = http_client is None
        self._sleep = sleep
        self.falhas = FilaNotificacoesFalhas(store, relogio)
        self._timer: Optional[TarefaAgendada] = None

    @property
    def habilitado(self) -> bool:
        return bool(self.config.url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = criar_http_client(self.config.timeout_segundos)
            logger.info("[Webhook] HTTP client criado")
        return self._client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.segredo:
            headers["Authorization"] = f"Bearer {self.config.segredo}"
        return headers

    async def _post(self, payload: dict) -> httpx.Response:
        """
        Um POST para o webhook.

        Raises:
            WebhookTerminalError: 4xx exceto 429
            WebhookRetentavelError: rede, 5xx, 429
        """
        try:
            response = await self._get_client().post(
                self.config.url,
                json=payload,
                headers=self._headers(),
            )
        except httpx.RequestError as e:
            raise WebhookRetentavelError(f"Erro de rede: {e}") from e

        if response.is_success:
            return response

        if 400 <= response.status_code < 500 and response.status_code != 429:
            raise WebhookTerminalError(f"HTTP {response.status_code}", response.status_code)

        raise WebhookRetentavelError(f"HTTP {response.status_code}", {"status": response.status_code})

    async def enviar(self, payload: dict) -> ResultadoNotificacao:
        """
        Envia notificação com retry inline.

        Returns:
            ResultadoNotificacao; enfileirada=True quando foi para a DLQ
        """
        if not self.habilitado:
            return ResultadoNotificacao(sucesso=False, motivo="sem_webhook_url")

        try:
            response = await retry_with_backoff(
                self._post,
                payload,
                max_retries=self.config.max_tentativas,
                base_delay=self.config.base_delay_segundos,
                max_delay=self.config.max_delay_segundos,
                retry_on=(WebhookRetentavelError,),
                sleep=self._sleep,
            )
        except WebhookTerminalError as e:
            logger.warning(f"[Webhook] Rejeitado pelo destino ({e.status}), sem retry")
            return ResultadoNotificacao(sucesso=False, status=e.status, motivo="erro_cliente")
        except WebhookRetentavelError as e:
            self.falhas.adicionar(payload, tentativas=self.config.max_tentativas)
            self.iniciar_reprocessamento()
            return ResultadoNotificacao(sucesso=False, motivo=e.message, enfileirada=True)

        return ResultadoNotificacao(sucesso=True, status=response.status_code)

    async def processar_fila_falhas(self) -> dict:
        """
        Uma passada pela DLQ inteira.

        Returns:
            Contagem de entregues, reenfileiradas e descartadas
        """
        resultado = {"entregues": 0, "reenfileiradas": 0, "descartadas": 0}

        if not len(self.falhas):
            self.parar_reprocessamento()
            return resultado

        # Jobs só saem da fila quando entregues ou descartados
        for job in self.falhas.pendentes():
            job.tentativas += 1
            try:
                await self._post(job.payload)
            except WebhookTerminalError as e:
                logger.error(f"[Webhook] Notificação descartada: rejeitada com HTTP {e.status}")
                self.falhas.remover(job)
                resultado["descartadas"] += 1
            except WebhookRetentavelError as e:
                if job.tentativas < self.config.teto_tentativas:
                    resultado["reenfileiradas"] += 1
                else:
                    logger.error(
                        f"[Webhook] Notificação falhou permanentemente após "
                        f"{job.tentativas} tentativas: {e}"
                    )
                    self.falhas.remover(job)
                    resultado["descartadas"] += 1
            else:
                self.falhas.remover(job)
                resultado["entregues"] += 1

        self.falhas.salvar()

        logger.info(
            f"[Webhook] Reprocessamento: {resultado['entregues']} entregue(s), "
            f"{resultado['reenfileiradas']} reenfileirada(s), {resultado['descartadas']} descartada(s)"
        )

        if not len(self.falhas):
            self.parar_reprocessamento()

        return resultado

    # Timer

    @property
    def reprocessamento_ativo(self) -> bool:
        return self._timer is not None and self._timer.ativa

    def iniciar_reprocessamento(self) -> bool:
        """Inicia timer de reprocessamento (idempotente)."""
        if self.reprocessamento_ativo:
            return False

        self._timer = agendar_periodica(
            self.processar_fila_falhas,
            self.config.intervalo_reprocessamento_segundos,
            name="webhook_reprocessamento",
            sleep=self._sleep,
        )
        logger.debug("[Webhook] Timer de reprocessamento iniciado")
        return True

    def parar_reprocessamento(self):
        if self._timer is not None:
            self._timer.cancelar()
            self._timer = None
            logger.debug("[Webhook] Timer de reprocessamento parado")

    def status(self) -> dict:
        return {
            "webhook_url": "***configurado***" if self.config.url else None,
            "fila_falhas": len(self.falhas),
            "reprocessamento_ativo": self.reprocessamento_ativo,
        }

    async def fechar(self):
        """Para o timer e fecha o cliente HTTP se foi criado aqui."""
        self.parar_reprocessamento()
        if self._client is not None and self._client_proprio:
            await self._client.aclose()
            self._client = None
