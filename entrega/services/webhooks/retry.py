"""
Retry com backoff exponencial para webhooks.

Delay entre tentativas: base * 2^tentativa, limitado a max_delay.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def _log_tentativa(max_retries: int) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState):
        erro = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"[Retry] Tentativa {retry_state.attempt_number}/{max_retries} falhou: {erro}. "
            f"Aguardando {delay}s..."
        )

    return before_sleep


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs,
) -> Any:
    """
    Executa funcao async com retry e backoff exponencial.

    Args:
        func: Funcao async a executar
        max_retries: Numero maximo de tentativas
        base_delay: Delay inicial em segundos
        max_delay: Delay maximo em segundos
        retry_on: Excecoes que disparam nova tentativa (as demais propagam na hora)
        sleep: Funcao de espera (injetavel em testes)
        *args, **kwargs: Argumentos para a funcao

    Returns:
        Resultado da funcao

    Raises:
        Exception: A ultima excecao, se todas as tentativas falharem
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_tentativa(max_retries),
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                resultado = await func(*args, **kwargs)
    except retry_on as e:
        logger.error(f"[Retry] Todas as {max_retries} tentativas falharam: {e}")
        raise

    return resultado
