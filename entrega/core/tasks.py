"""
Utilidades para tasks assincronas.

Wrappers seguros para asyncio.create_task com error handling e logging,
e TarefaAgendada: handle cancelavel para timers (delay unico ou periodico),
para que o shutdown pare toda atividade de fundo de forma deterministica.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional

logger = logging.getLogger(__name__)

# Contador de falhas por tipo (para metricas)
_task_failures: dict[str, int] = {}


async def _safe_wrapper(
    coro: Coroutine,
    task_name: str,
    on_error: Optional[Callable[[Exception], None]] = None
) -> Any:
    """
    Wrapper que executa coroutine com error handling.

    Args:
        coro: Coroutine a executar
        task_name: Nome para logging/metricas
        on_error: Callback opcional para erros
    """
    try:
        return await coro
    except asyncio.CancelledError:
        logger.debug(f"Task cancelada: {task_name}")
        raise
    except Exception as e:
        _task_failures[task_name] = _task_failures.get(task_name, 0) + 1

        logger.error(
            f"Erro em background task '{task_name}': {e}",
            exc_info=True,
            extra={
                "task_name": task_name,
                "error_type": type(e).__name__,
                "total_failures": _task_failures[task_name]
            }
        )

        if on_error:
            try:
                on_error(e)
            except Exception as callback_error:
                logger.error(f"Erro no callback on_error: {callback_error}")

        # Nao re-raise para nao crashar outras tasks
        return None


def safe_create_task(
    coro: Coroutine,
    name: Optional[str] = None,
    on_error: Optional[Callable[[Exception], None]] = None
) -> asyncio.Task:
    """
    Cria task com error handling automatico.

    Uso:
        safe_create_task(minha_funcao(), name="minha_funcao")

    Args:
        coro: Coroutine a executar
        name: Nome da task (para logging)
        on_error: Callback opcional para quando ocorrer erro

    Returns:
        asyncio.Task com wrapper de error handling
    """
    task_name = name or (coro.__qualname__ if hasattr(coro, '__qualname__') else "unknown")
    wrapped = _safe_wrapper(coro, task_name, on_error)
    return asyncio.create_task(wrapped, name=task_name)


def get_task_failure_counts() -> dict[str, int]:
    """Retorna contagem de falhas por task (para metricas/alertas)."""
    return _task_failures.copy()


def reset_task_failure_counts():
    """Reseta contadores (para testes)."""
    _task_failures.clear()


class TarefaAgendada:
    """
    Handle de uma task agendada, com cancelamento explicito.

    Criada por agendar_com_delay() ou agendar_periodica().
    """

    def __init__(self, nome: str, task: asyncio.Task):
        self.nome = nome
        self._task = task

    @property
    def ativa(self) -> bool:
        return not self._task.done()

    def cancelar(self) -> bool:
        """Cancela a task. Retorna False se ela ja tinha terminado."""
        if self._task.done():
            return False
        self._task.cancel()
        logger.debug(f"Tarefa '{self.nome}' cancelada")
        return True

    async def aguardar(self) -> Any:
        """Aguarda termino; cancelamento nao propaga para quem aguarda."""
        try:
            return await self._task
        except asyncio.CancelledError:
            return None


def agendar_com_delay(
    func: Callable[[], Awaitable[Any]],
    delay_seconds: float,
    name: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> TarefaAgendada:
    """
    Agenda execucao unica apos delay.

    Uso:
        tarefa = agendar_com_delay(conectar, delay_seconds=4.2, name="reconexao")
        tarefa.cancelar()

    Args:
        func: Funcao async sem argumentos (chamada so apos o delay)
        delay_seconds: Segundos de espera
        name: Nome da tarefa
        sleep: Funcao de espera (injetavel em testes)
    """
    task_name = name or f"delayed_{getattr(func, '__name__', 'task')}"

    async def delayed():
        await sleep(delay_seconds)
        return await func()

    return TarefaAgendada(task_name, safe_create_task(delayed(), name=task_name))


def agendar_periodica(
    func: Callable[[], Awaitable[Any]],
    intervalo_seconds: float,
    name: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> TarefaAgendada:
    """
    Executa func a cada intervalo ate ser cancelada.

    Uma falha em func e logada e nao interrompe o ciclo.
    A primeira execucao acontece apos o primeiro intervalo.
    """
    task_name = name or f"periodic_{getattr(func, '__name__', 'task')}"

    async def ciclo():
        while True:
            await sleep(intervalo_seconds)
            try:
                await func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                _task_failures[task_name] = _task_failures.get(task_name, 0) + 1
                logger.error(f"Erro em tarefa periodica '{task_name}': {e}", exc_info=True)

    return TarefaAgendada(task_name, safe_create_task(ciclo(), name=task_name))
