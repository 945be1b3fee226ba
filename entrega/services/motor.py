"""
Motor de entrega: monta os componentes de uma conta e expõe a superfície
consumida pela camada de API/CLI.

Fluxo:
    pode_enviar() -> enfileirar() -> worker da fila -> transporte
    resultado -> governador/risco -> eventos de webhook
    desconexão do transporte -> ao_desconectar() -> reconexão com backoff
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from entrega.core.config import Settings, get_settings
from entrega.core.relogio import Relogio, relogio_sistema
from entrega.core.tasks import TarefaAgendada, agendar_periodica, safe_create_task
from entrega.persistencia import (
    ArquivoSnapshotStore,
    MemoriaSnapshotStore,
    RedisSnapshotStore,
    SnapshotStore,
)
from entrega.services.atividade import RastreadorAtividade
from entrega.services.fila import FilaConfig, FilaEntrega, Prioridade, ResultadoEnvio
from entrega.services.governador import GovernadorEnvio
from entrega.services.modificadores import (
    CalendarioConfig,
    PadraoCalendario,
    RampaAtividade,
    RampaConfig,
)
from entrega.services.rate_limiter import OrcamentoTaxa
from entrega.services.recibos import RastreadorRecibos, RecibosConfig, ResultadoRecibo
from entrega.services.reconexao import AgendadorReconexao, GerenciadorReconexao, ReconexaoConfig
from entrega.services.risco import AlertaRisco, MonitorRisco, NivelRisco, RiscoConfig
from entrega.services.tipos import DecisaoEnvio
from entrega.services.transporte import Transporte
from entrega.services.warmup_contato import WarmupConfig, WarmupContatos
from entrega.services.webhooks import (
    EmissorEventos,
    GerenciadorNotificacoes,
    NotificacaoConfig,
    TipoEvento,
)

logger = logging.getLogger(__name__)


def criar_store(settings: Settings) -> SnapshotStore:
    """Store de snapshots conforme STORAGE_BACKEND."""
    if settings.STORAGE_BACKEND == "redis":
        return RedisSnapshotStore.from_url(settings.REDIS_URL, namespace=settings.SESSION_ID)
    if settings.STORAGE_BACKEND == "memoria":
        return MemoriaSnapshotStore()
    return ArquivoSnapshotStore(settings.diretorio_sessao)


class MotorEntrega:
    """Governança e confiabilidade de entrega para uma conta."""

    def __init__(
        self,
        transporte: Transporte,
        store: Optional[SnapshotStore] = None,
        semanas_conta: float = 1,
        relogio: Relogio = relogio_sistema,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        config_fila: Optional[FilaConfig] = None,
        config_reconexao: Optional[ReconexaoConfig] = None,
        config_warmup: Optional[WarmupConfig] = None,
        config_risco: Optional[RiscoConfig] = None,
        config_rampa: Optional[RampaConfig] = None,
        config_calendario: Optional[CalendarioConfig] = None,
        config_recibos: Optional[RecibosConfig] = None,
        config_notificacao: Optional[NotificacaoConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        ao_alerta_risco: Optional[Callable[[AlertaRisco], Any]] = None,
        ao_desistir_reconexao: Optional[Callable[[int], Any]] = None,
    ):
        self.transporte = transporte
        self._relogio = relogio
        self._ao_alerta_risco = ao_alerta_risco
        self._ao_desistir_reconexao = ao_desistir_reconexao
        self._emissoes: set[asyncio.Task] = set()
        sleep_async = sleep or asyncio.sleep
        self._sleep_async = sleep_async
        self._verificacao_recibos: Optional[TarefaAgendada] = None

        self.orcamento = OrcamentoTaxa(store, semanas_conta, relogio)
        self.warmup = WarmupContatos(store, config_warmup, relogio)
        self.risco = MonitorRisco(store, config_risco, relogio, ao_alertar=self._ao_alerta)
        self.rampa = RampaAtividade(store, config_rampa, relogio)
        self.calendario = PadraoCalendario(config_calendario, relogio)
        self.governador = GovernadorEnvio(
            self.orcamento,
            self.warmup,
            self.risco,
            rampa=self.rampa,
            calendario=self.calendario,
            relogio=relogio,
        )
        self.atividade = RastreadorAtividade(store, relogio)
        self.recibos = RastreadorRecibos(self.risco, store, config_recibos, relogio)

        self.notificacoes = GerenciadorNotificacoes(
            config_notificacao,
            store,
            http_client=http_client,
            relogio=relogio,
            sleep=sleep_async,
        )
        self.eventos = EmissorEventos(self.notificacoes, relogio=relogio)

        self.fila = FilaEntrega(
            transporte,
            self.governador,
            self.risco,
            store,
            config_fila,
            relogio=relogio,
            rng=rng,
            ao_resultado=self._ao_resultado_fila,
            sleep=sleep,
        )

        self.reconexao = GerenciadorReconexao(config_reconexao, rng)
        self.agendador_reconexao = AgendadorReconexao(
            self.reconexao,
            conectar=self._reconectar,
            ao_desistir=self._ao_desistir,
            sleep=sleep_async,
        )

    @classmethod
    def a_partir_de_settings(
        cls,
        transporte: Transporte,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> "MotorEntrega":
        """
        Monta o motor a partir das variáveis de ambiente.

        Raises:
            ConfiguracaoError: Se a configuração for inconsistente
        """
        settings = settings or get_settings()
        settings.validar()

        kwargs.setdefault("store", criar_store(settings))
        return cls(
            transporte,
            semanas_conta=settings.ACCOUNT_AGE_WEEKS,
            config_fila=settings.config_fila(),
            config_reconexao=settings.config_reconexao(),
            config_warmup=settings.config_warmup(),
            config_risco=settings.config_risco(),
            config_rampa=settings.config_rampa(),
            config_calendario=settings.config_calendario(),
            config_recibos=settings.config_recibos(),
            config_notificacao=settings.config_notificacao(),
            **kwargs,
        )

    # Ciclo de vida

    def iniciar(self):
        """
        Inicia worker da fila, verificação periódica de recibos e, se houver
        pendências, o reprocessamento de webhooks.
        """
        self.fila.iniciar()
        if self._verificacao_recibos is None or not self._verificacao_recibos.ativa:
            self._verificacao_recibos = agendar_periodica(
                self.recibos.verificar_periodicamente,
                self.recibos.config.intervalo_verificacao_segundos,
                name="verificacao_recibos",
                sleep=self._sleep_async,
            )
        if len(self.notificacoes.falhas):
            self.notificacoes.iniciar_reprocessamento()
        logger.info("[Motor] Motor de entrega iniciado")

    async def parar(self):
        """Para toda atividade de fundo."""
        await self.fila.parar()
        self.agendador_reconexao.cancelar()
        if self._verificacao_recibos is not None:
            self._verificacao_recibos.cancelar()
            self._verificacao_recibos = None
        if self._emissoes:
            await asyncio.gather(*self._emissoes, return_exceptions=True)
        await self.notificacoes.fechar()
        logger.info("[Motor] Motor de entrega parado")

    # Admissão e fila

    def pode_enviar(self, destino: str) -> DecisaoEnvio:
        return self.governador.pode_enviar(destino)

    def enfileirar(
        self,
        destino: str,
        conteudo: str,
        referencia_resposta: Optional[str] = None,
        prioridade: Prioridade = Prioridade.NORMAL,
    ) -> str:
        return self.fila.enfileirar(destino, conteudo, referencia_resposta, prioridade)

    def tentar_mortas(self) -> int:
        return self.fila.tentar_mortas()

    # Contabilidade de atividade

    def registrar_envio(self, destino: str, mensagem_id: Optional[str] = None):
        """Envio feito fora da fila (o chamador consultou pode_enviar antes)."""
        self.governador.registrar_envio(destino)
        self.atividade.registrar_envio(destino)
        if mensagem_id:
            self.recibos.registrar_enviado(mensagem_id, destino)

    def registrar_recebido(self, remetente: str):
        self.atividade.registrar_recebido(remetente)
        self.rampa.registrar_atividade()

    def registrar_recibo(self, mensagem_id: str, status: str) -> ResultadoRecibo:
        """Recibo de entrega vindo do transporte ('delivered', 'read', 'failed')."""
        return self.recibos.atualizar_status(mensagem_id, status)

    # Conexão

    def ao_desconectar(self, motivo: Any = None):
        """Evento de desconexão vindo do transporte."""
        logger.warning(f"[Motor] Transporte desconectado: {motivo}")
        self.risco.registrar_queda_conexao()
        self._emitir(TipoEvento.CONEXAO_FECHADA, {"motivo": str(motivo) if motivo is not None else None})
        return self.agendador_reconexao.ao_desconectar(motivo)

    def ao_conectado(self):
        """Conexão confirmada pelo transporte (fora do fluxo de reconexão)."""
        self.agendador_reconexao.ao_conectado()
        self._emitir(TipoEvento.CONEXAO_ABERTA, {})

    async def _reconectar(self):
        await self.transporte.conectar()
        self._emitir(TipoEvento.CONEXAO_ABERTA, {"tentativas": self.reconexao.tentativas})

    def _ao_desistir(self, tentativas: int):
        self._emitir(TipoEvento.CONEXAO_FECHADA, {"motivo": "reconexao_esgotada", "tentativas": tentativas})
        if self._ao_desistir_reconexao:
            self._ao_desistir_reconexao(tentativas)

    # Operador

    def estatisticas_taxa(self) -> dict:
        return self.governador.estatisticas_taxa()

    def metricas_risco(self) -> dict:
        return self.risco.metricas()

    def status_fila(self) -> dict:
        return self.fila.status()

    def status_notificacoes(self) -> dict:
        return {**self.notificacoes.status(), "eventos": self.eventos.estatisticas()}

    def status_reconexao(self) -> dict:
        return {
            **self.reconexao.estado(),
            "pendente": self.agendador_reconexao.pendente,
            "desistiu": self.agendador_reconexao.desistiu,
        }

    def status_contato(self, destino: str) -> dict:
        return {
            **self.warmup.status_contato(destino),
            "bloqueado": self.recibos.contato_bloqueado(destino),
        }

    def saude_entrega(self) -> dict:
        return self.recibos.verificar_saude()

    def estatisticas_atividade(self) -> dict:
        seguro, motivo = self.atividade.esta_seguro()
        return {**self.atividade.estatisticas(), "seguro": seguro, "motivo": motivo}

    def sair_hibernacao(self):
        self.risco.sair_hibernacao()

    def resetar_metricas_risco(self):
        self.risco.resetar_metricas()

    def definir_idade_conta(self, semanas: float):
        self.orcamento.definir_idade_conta(semanas)

    async def notificar(self, tipo: TipoEvento, dados: dict) -> dict:
        return await self.eventos.emitir(tipo, dados)

    # Callbacks internos

    def _ao_resultado_fila(self, resultado: ResultadoEnvio):
        dados = {
            "id": resultado.entrada_id,
            "destino": resultado.destino,
            "tentativas": resultado.tentativas,
        }

        if resultado.sucesso:
            self.atividade.registrar_envio(resultado.destino)
            mensagem_id = resultado.extras.get("mensagem_id")
            if mensagem_id:
                self.recibos.registrar_enviado(mensagem_id, resultado.destino)
            self._emitir(TipoEvento.MENSAGEM_ENVIADA, dados)
            return

        dados["erro"] = resultado.erro
        if resultado.extras.get("limite_taxa"):
            self._emitir(TipoEvento.RATE_LIMIT, {"destino": resultado.destino})
        if resultado.status == "dead":
            self._emitir(TipoEvento.MENSAGEM_MORTA, dados)
        else:
            self._emitir(TipoEvento.MENSAGEM_FALHOU, dados)

    def _ao_alerta(self, alerta: AlertaRisco):
        dados = {
            "nivel": alerta.nivel.value,
            "score": alerta.score,
            "avisos": alerta.avisos,
            "recomendacao": alerta.recomendacao,
        }
        self._emitir(TipoEvento.ALERTA_RISCO, dados)
        if alerta.nivel == NivelRisco.CRITICAL:
            self._emitir(TipoEvento.HIBERNACAO, dados)

        if self._ao_alerta_risco:
            self._ao_alerta_risco(alerta)

    def _emitir(self, tipo: TipoEvento, dados: dict):
        """Agenda emissão de evento sem bloquear quem chamou."""
        if not self.notificacoes.habilitado:
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[Motor] Evento {tipo.value} não emitido: sem event loop")
            return

        task = safe_create_task(self.eventos.emitir(tipo, dados), name=f"evento_{tipo.value}")
        self._emissoes.add(task)
        task.add_done_callback(self._emissoes.discard)
