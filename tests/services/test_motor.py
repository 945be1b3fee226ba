"""
Testes do motor de entrega (integração dos componentes).
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from entrega.core.config import Settings
from entrega.core.exceptions import ConfiguracaoError, TransporteError
from entrega.core.relogio import DIA
from entrega.persistencia import ArquivoSnapshotStore, MemoriaSnapshotStore
from entrega.services.fila import FilaConfig
from entrega.services.motor import MotorEntrega, criar_store
from entrega.services.reconexao import ReconexaoConfig
from entrega.services.risco import AlertaRisco, NivelRisco
from entrega.services.tipos import CodigoNegacao
from entrega.services.webhooks import FilaNotificacoesFalhas, NotificacaoConfig, TipoEvento

URL = "https://hooks.exemplo.com/entrega"


async def _ceder(_segundos):
    await asyncio.sleep(0)


async def _ciclos(n: int = 10):
    for _ in range(n):
        await asyncio.sleep(0)


def _eventos_postados(mock_http_client) -> list[str]:
    return [c.kwargs["json"]["event"] for c in mock_http_client.post.await_args_list]


@pytest.fixture
def criar_motor(transporte, store, relogio, rng, mock_http_client):
    def _criar(webhook: bool = True, **kwargs):
        kwargs.setdefault("store", store)
        kwargs.setdefault("config_fila", FilaConfig(simular_digitacao=False))
        kwargs.setdefault(
            "config_notificacao", NotificacaoConfig(url=URL if webhook else "")
        )
        return MotorEntrega(
            transporte,
            semanas_conta=8,
            relogio=relogio,
            rng=rng,
            sleep=_ceder,
            http_client=mock_http_client,
            **kwargs,
        )
    return _criar


def _critico(motor: MotorEntrega):
    for _ in range(7):
        motor.risco.registrar_rate_limit()
    for _ in range(6):
        motor.risco.registrar_queda_conexao()


class TestEnvio:

    @pytest.mark.asyncio
    async def test_envio_pela_fila_emite_evento(self, criar_motor, transporte, mock_http_client):
        motor = criar_motor()

        assert motor.pode_enviar("5511999990001").permitido
        motor.enfileirar("5511999990001", "Oi!")
        resultado = await motor.fila.processar_proxima()
        await motor.parar()

        assert resultado.sucesso
        transporte.enviar_mensagem.assert_awaited_once()
        assert motor.estatisticas_atividade()["enviadas"] == 1
        assert motor.estatisticas_taxa()["msgs_hora"] == 1
        assert _eventos_postados(mock_http_client) == ["message.sent"]

    @pytest.mark.asyncio
    async def test_falha_definitiva_emite_dead(self, criar_motor, transporte, mock_http_client):
        transporte.enviar_mensagem.side_effect = TransporteError("bloqueado", inalcancavel=True)
        motor = criar_motor()
        motor.enfileirar("5511999990001", "Oi!")

        await motor.fila.processar_proxima()
        await motor.parar()

        # falha de entrega eleva o risco antes do resultado chegar
        assert _eventos_postados(mock_http_client) == ["antiban.warning", "message.dead"]
        assert motor.status_fila()["dead"] == 1

    @pytest.mark.asyncio
    async def test_sem_webhook_nao_emite(self, criar_motor, mock_http_client):
        motor = criar_motor(webhook=False)
        motor.enfileirar("5511999990001", "Oi!")

        await motor.fila.processar_proxima()
        await motor.parar()

        mock_http_client.post.assert_not_awaited()

    def test_envio_fora_da_fila(self, criar_motor):
        motor = criar_motor(webhook=False)

        motor.registrar_envio("a")

        assert motor.orcamento.contagem_dia == 1
        assert motor.status_contato("a")["total_mensagens"] == 1
        assert motor.estatisticas_atividade()["enviadas"] == 1

    @pytest.mark.asyncio
    async def test_recibo_de_mensagem_da_fila(self, criar_motor):
        motor = criar_motor(webhook=False)
        motor.enfileirar("5511999990001", "Oi!")

        await motor.fila.processar_proxima()
        resultado = motor.registrar_recibo("msg-1", "DELIVERY_ACK")
        await motor.parar()

        assert resultado.atualizado
        assert motor.saude_entrega()["estatisticas"]["entregues"] == 1

    def test_bloqueio_detectado_por_recibos(self, criar_motor, relogio):
        motor = criar_motor(webhook=False)
        for i in range(3):
            motor.registrar_envio("a", mensagem_id=f"m{i}")

        relogio.avancar(DIA + 1)
        motor.recibos.verificar_bloqueios()

        assert motor.status_contato("a")["bloqueado"]
        assert motor.metricas_risco()["bloqueios"] == 1

    def test_recebido_conta_como_atividade(self, criar_motor, relogio):
        motor = criar_motor(webhook=False)
        relogio.avancar(600)

        motor.registrar_recebido("a")

        assert motor.estatisticas_atividade()["recebidas"] == 1
        assert motor.rampa.ultima_atividade == relogio()


class TestRisco:

    @pytest.mark.asyncio
    async def test_critico_emite_alerta_e_hibernacao(self, criar_motor, mock_http_client):
        ao_alerta = MagicMock()
        motor = criar_motor(ao_alerta_risco=ao_alerta)

        _critico(motor)
        await motor.parar()

        eventos = _eventos_postados(mock_http_client)
        assert "antiban.warning" in eventos
        assert "antiban.hibernation" in eventos
        ultimo_alerta = ao_alerta.call_args[0][0]
        assert isinstance(ultimo_alerta, AlertaRisco)
        assert ultimo_alerta.nivel == NivelRisco.CRITICAL
        assert motor.pode_enviar("a").codigo == CodigoNegacao.HIBERNACAO

    def test_hibernacao_sobrevive_restart(self, criar_motor):
        _critico(criar_motor(webhook=False))

        restaurado = criar_motor(webhook=False)

        assert restaurado.metricas_risco()["hibernando"]
        assert restaurado.pode_enviar("a").codigo == CodigoNegacao.HIBERNACAO

    def test_acoes_do_operador(self, criar_motor):
        motor = criar_motor(webhook=False)
        _critico(motor)

        motor.sair_hibernacao()
        assert motor.pode_enviar("a").codigo == CodigoNegacao.RISCO_CRITICO

        motor.resetar_metricas_risco()
        assert motor.pode_enviar("a").permitido

    def test_definir_idade_conta(self, criar_motor):
        motor = criar_motor(webhook=False)

        motor.definir_idade_conta(0.5)

        assert motor.estatisticas_taxa()["tier"] == "novo"


class TestConexao:

    @pytest.mark.asyncio
    async def test_reconecta_e_emite_eventos(self, criar_motor, transporte, mock_http_client):
        motor = criar_motor()

        proximo = motor.ao_desconectar("stream errored")
        assert proximo.tentativa == 1
        assert motor.status_reconexao()["pendente"]

        await _ciclos()
        await motor.parar()

        transporte.conectar.assert_awaited_once()
        assert motor.status_reconexao()["tentativas"] == 0
        assert motor.metricas_risco()["quedas_conexao"] == 1
        assert _eventos_postados(mock_http_client) == ["connection.close", "connection.open"]

    @pytest.mark.asyncio
    async def test_desiste_e_avisa_operador(self, criar_motor, transporte):
        transporte.conectar.side_effect = ConnectionError("recusado")
        ao_desistir = MagicMock()
        motor = criar_motor(
            webhook=False,
            config_reconexao=ReconexaoConfig(max_tentativas=1),
            ao_desistir_reconexao=ao_desistir,
        )

        motor.ao_desconectar("queda")
        await _ciclos()

        ao_desistir.assert_called_once_with(1)
        assert motor.status_reconexao()["desistiu"]

        motor.ao_conectado()
        assert not motor.status_reconexao()["desistiu"]
        await motor.parar()


class TestCicloDeVida:

    @pytest.mark.asyncio
    async def test_iniciar_retoma_dlq_pendente(self, criar_motor, store, relogio):
        FilaNotificacoesFalhas(store, relogio).adicionar({"event": "message.sent"}, tentativas=5)
        motor = criar_motor()

        motor.iniciar()

        assert motor.fila.processando
        assert motor.notificacoes.reprocessamento_ativo
        assert motor._verificacao_recibos.ativa

        await motor.parar()

        assert not motor.fila.processando
        assert not motor.notificacoes.reprocessamento_ativo
        assert motor._verificacao_recibos is None

    @pytest.mark.asyncio
    async def test_notificar_manual(self, criar_motor, mock_http_client):
        motor = criar_motor()

        resultado = await motor.notificar(TipoEvento.CONEXAO_ABERTA, {"origem": "operador"})

        assert resultado["enviado"]
        assert motor.status_notificacoes()["eventos"]["total_eventos"] == 1


class TestSettings:

    def test_a_partir_de_settings(self, transporte):
        settings = Settings(_env_file=None, STORAGE_BACKEND="memoria", ACCOUNT_AGE_WEEKS=8)

        motor = MotorEntrega.a_partir_de_settings(transporte, settings)

        assert motor.estatisticas_taxa()["tier"] == "maduro"
        assert not motor.notificacoes.habilitado
        assert motor.fila.config.max_tentativas == 2

    def test_settings_invalido(self, transporte):
        settings = Settings(_env_file=None, STORAGE_BACKEND="s3")

        with pytest.raises(ConfiguracaoError):
            MotorEntrega.a_partir_de_settings(transporte, settings)

    def test_criar_store(self, tmp_path):
        memoria = criar_store(Settings(_env_file=None, STORAGE_BACKEND="memoria"))
        arquivo = criar_store(
            Settings(_env_file=None, STORAGE_BACKEND="arquivo", SESSIONS_DIR=str(tmp_path))
        )

        assert isinstance(memoria, MemoriaSnapshotStore)
        assert isinstance(arquivo, ArquivoSnapshotStore)
