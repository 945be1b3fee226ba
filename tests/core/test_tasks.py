"""
Testes para utilidades de tasks assincronas.
"""
import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from entrega.core.tasks import (
    agendar_com_delay,
    agendar_periodica,
    get_task_failure_counts,
    reset_task_failure_counts,
    safe_create_task,
)


async def _ceder(_segundos):
    """Sleep falso que só cede o controle ao event loop."""
    await asyncio.sleep(0)


class TestSafeCreateTask:
    """Testes para safe_create_task."""

    def setup_method(self):
        """Limpa contadores antes de cada teste."""
        reset_task_failure_counts()

    @pytest.mark.asyncio
    async def test_executa_task_com_sucesso(self):
        """Task bem sucedida deve retornar resultado."""
        async def task_ok():
            return "sucesso"

        task = safe_create_task(task_ok(), name="task_ok")
        result = await task

        assert result == "sucesso"
        assert get_task_failure_counts().get("task_ok", 0) == 0

    @pytest.mark.asyncio
    async def test_captura_erro_sem_crashar(self):
        """Task com erro deve ser capturada sem crashar."""
        async def task_erro():
            raise ValueError("Erro simulado")

        task = safe_create_task(task_erro(), name="task_erro")
        result = await task

        assert result is None
        assert get_task_failure_counts()["task_erro"] == 1

    @pytest.mark.asyncio
    async def test_loga_erro(self):
        """Erro deve ser logado com o nome da task."""
        async def task_erro():
            raise RuntimeError("Erro de teste")

        with patch("entrega.core.tasks.logger") as mock_logger:
            task = safe_create_task(task_erro(), name="task_logada")
            await task

            mock_logger.error.assert_called()
            assert "task_logada" in str(mock_logger.error.call_args)

    @pytest.mark.asyncio
    async def test_callback_on_error(self):
        """Callback de erro recebe a exception."""
        callback = MagicMock()

        async def task_erro():
            raise ValueError("Erro")

        await safe_create_task(task_erro(), name="task_callback", on_error=callback)

        callback.assert_called_once()
        assert isinstance(callback.call_args[0][0], ValueError)


class TestAgendarComDelay:
    """Testes para agendar_com_delay."""

    def setup_method(self):
        reset_task_failure_counts()

    @pytest.mark.asyncio
    async def test_executa_apos_delay(self):
        """Função só roda depois do sleep com o delay pedido."""
        sleep = AsyncMock()
        func = AsyncMock(return_value="ok")

        tarefa = agendar_com_delay(func, delay_seconds=4.2, name="delayed_test", sleep=sleep)
        resultado = await tarefa.aguardar()

        sleep.assert_awaited_once_with(4.2)
        func.assert_awaited_once()
        assert resultado == "ok"
        assert not tarefa.ativa

    @pytest.mark.asyncio
    async def test_cancelar_impede_execucao(self):
        """Tarefa cancelada durante o delay não executa."""
        func = AsyncMock()

        tarefa = agendar_com_delay(func, delay_seconds=60, name="cancelada")
        await asyncio.sleep(0)

        assert tarefa.ativa
        assert tarefa.cancelar() is True
        await tarefa.aguardar()

        func.assert_not_awaited()
        assert not tarefa.ativa

    @pytest.mark.asyncio
    async def test_cancelar_tarefa_terminada_retorna_false(self):
        tarefa = agendar_com_delay(AsyncMock(), delay_seconds=0, name="terminada", sleep=AsyncMock())
        await tarefa.aguardar()

        assert tarefa.cancelar() is False


class TestAgendarPeriodica:
    """Testes para agendar_periodica."""

    def setup_method(self):
        reset_task_failure_counts()

    @pytest.mark.asyncio
    async def test_executa_repetidamente_ate_cancelar(self):
        chamadas = []

        async def func():
            chamadas.append(1)

        tarefa = agendar_periodica(func, intervalo_seconds=60, name="periodica", sleep=_ceder)
        for _ in range(10):
            await asyncio.sleep(0)

        tarefa.cancelar()
        await tarefa.aguardar()

        assert len(chamadas) >= 2
        assert not tarefa.ativa

    @pytest.mark.asyncio
    async def test_erro_nao_interrompe_ciclo(self):
        """Falha numa execução é contada e o ciclo continua."""
        chamadas = []

        async def func():
            chamadas.append(1)
            if len(chamadas) == 1:
                raise RuntimeError("falhou")

        tarefa = agendar_periodica(func, intervalo_seconds=1, name="periodica_erro", sleep=_ceder)
        for _ in range(10):
            await asyncio.sleep(0)

        tarefa.cancelar()
        await tarefa.aguardar()

        assert len(chamadas) >= 2
        assert get_task_failure_counts()["periodica_erro"] == 1
