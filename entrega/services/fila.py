"""
Fila de entrega persistente.

Um único worker por conta consome a fila: nunca há dois envios em voo.

Ciclo de vida de uma entrada:
    pending -> sending -> (removida, sucesso)
                       -> pending (falha retentável, prioridade low)
                       -> dead (tentativas esgotadas ou destino inalcançável)

Entradas dead ficam no snapshot até tentar_mortas() ou limpar().
Ao carregar, entradas sending/failed voltam para pending.
"""
import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from entrega.core.exceptions import TransporteError
from entrega.core.relogio import Relogio, relogio_sistema
from entrega.core.tasks import safe_create_task
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.services.governador import GovernadorEnvio
from entrega.services.risco import MonitorRisco
from entrega.services.timing import calcular_tempo_digitacao, jitter
from entrega.services.tipos import DecisaoEnvio
from entrega.services.transporte import PRESENCA_DIGITANDO, PRESENCA_PAUSADO, Transporte

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "message-queue"


class Prioridade(str, Enum):
    HIGH = "high"        # respostas
    NORMAL = "normal"
    LOW = "low"          # broadcast e retentativas

    @property
    def ordem(self) -> int:
        return _ORDEM_PRIORIDADE[self]


_ORDEM_PRIORIDADE = {Prioridade.HIGH: 0, Prioridade.NORMAL: 1, Prioridade.LOW: 2}


class StatusEntrada(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    FAILED = "failed"
    DEAD = "dead"


@dataclass
class EntradaFila:
    id: str
    destino: str
    conteudo: str
    referencia_resposta: Optional[str] = None
    prioridade: Prioridade = Prioridade.NORMAL
    tentativas: int = 0
    status: StatusEntrada = StatusEntrada.PENDING
    criado_em: float = 0.0
    ultima_tentativa_em: Optional[float] = None
    ultimo_erro: Optional[str] = None
    # Ordem de chegada dentro da prioridade (FIFO estável)
    sequencia: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "destino": self.destino,
            "conteudo": self.conteudo,
            "referencia_resposta": self.referencia_resposta,
            "prioridade": self.prioridade.value,
            "tentativas": self.tentativas,
            "status": self.status.value,
            "criado_em": self.criado_em,
            "ultima_tentativa_em": self.ultima_tentativa_em,
            "ultimo_erro": self.ultimo_erro,
            "sequencia": self.sequencia,
        }

    @classmethod
    def from_dict(cls, dados: dict) -> "EntradaFila":
        return cls(
            id=dados["id"],
            destino=dados["destino"],
            conteudo=dados.get("conteudo", ""),
            referencia_resposta=dados.get("referencia_resposta"),
            prioridade=Prioridade(dados.get("prioridade", Prioridade.NORMAL.value)),
            tentativas=dados.get("tentativas", 0),
            status=StatusEntrada(dados.get("status", StatusEntrada.PENDING.value)),
            criado_em=dados.get("criado_em", 0.0),
            ultima_tentativa_em=dados.get("ultima_tentativa_em"),
            ultimo_erro=dados.get("ultimo_erro"),
            sequencia=dados.get("sequencia", 0),
        )


@dataclass
class FilaConfig:
    max_tentativas: int = 2
    tamanho_lote: int = 3                  # envios antes da pausa longa
    pausa_lote_segundos: float = 300.0     # 5 minutos
    variancia_pausa: float = 0.3
    simular_digitacao: bool = True
    # Espera quando nada é elegível e a negação não traz dica
    espera_padrao_segundos: float = 5.0
    # Intervalo mínimo antes de retentar uma entrada que falhou
    espera_retentativa_segundos: float = 30.0
    # Espaçamento mínimo entre envios bem-sucedidos, com jitter
    pacing_base_segundos: float = 30.0
    variancia_pacing: float = 0.4


def _id_mensagem(handle: Any) -> Optional[str]:
    """ID da mensagem no handle devolvido pelo transporte (dict, objeto ou str)."""
    if handle is None:
        return None
    if isinstance(handle, str):
        return handle
    if isinstance(handle, dict):
        mensagem_id = handle.get("id")
    else:
        mensagem_id = getattr(handle, "id", None)
    return str(mensagem_id) if mensagem_id is not None else None


@dataclass
class ResultadoEnvio:
    """Desfecho de uma tentativa de envio da fila."""
    entrada_id: str
    destino: str
    sucesso: bool
    status: str                    # "sent" | "pending" | "dead"
    tentativas: int
    erro: Optional[str] = None
    extras: dict = field(default_factory=dict)


class FilaEntrega:
    """
    Fila de saída priorizada, persistente, com worker serializado.

    Uso:
        fila = FilaEntrega(transporte, governador, risco, store)
        fila.iniciar()
        fila.enfileirar("5511999999999", "Oi!", prioridade=Prioridade.HIGH)
        ...
        await fila.parar()
    """

    def __init__(
        self,
        transporte: Transporte,
        governador: GovernadorEnvio,
        risco: MonitorRisco,
        store: Optional[SnapshotStore] = None,
        config: Optional[FilaConfig] = None,
        relogio: Relogio = relogio_sistema,
        rng: Optional[random.Random] = None,
        ao_resultado: Optional[Callable[[ResultadoEnvio], Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.transporte = transporte
        self.governador = governador
        self.risco = risco
        self._store = store
        self.config = config or FilaConfig()
        self._relogio = relogio
        self._rng = rng or random.Random()
        self.ao_resultado = ao_resultado
        self._sleep = sleep or self._esperar

        self.entradas: list[EntradaFila] = []
        self._sequencia = 0
        self.enviadas_no_lote = 0
        # Fim do espaçamento sorteado após o último envio bem-sucedido
        self._liberado_em: Optional[float] = None

        self._task: Optional[asyncio.Task] = None
        self._parar_evento: Optional[asyncio.Event] = None
        self._nova_entrada: Optional[asyncio.Event] = None

        self._carregar()

    # Operações da fila

    def enfileirar(
        self,
        destino: str,
        conteudo: str,
        referencia_resposta: Optional[str] = None,
        prioridade: Prioridade = Prioridade.NORMAL,
    ) -> str:
        """
        Adiciona mensagem à fila e persiste.

        Returns:
            ID da entrada
        """
        agora = self._relogio()
        entrada = EntradaFila(
            id=f"pq_{int(agora * 1000)}_{uuid.uuid4().hex[:9]}",
            destino=destino,
            conteudo=conteudo,
            referencia_resposta=referencia_resposta,
            prioridade=Prioridade(prioridade),
            criado_em=agora,
            sequencia=self._proxima_sequencia(),
        )
        self.entradas.append(entrada)
        self._salvar()

        logger.debug(
            f"[Fila] Enfileirada {entrada.id} ({entrada.prioridade.value}), "
            f"{len(self._pendentes())} pendente(s)"
        )
        self._acordar()
        return entrada.id

    def _proxima_sequencia(self) -> int:
        self._sequencia += 1
        return self._sequencia

    def _pendentes(self) -> list[EntradaFila]:
        pendentes = [e for e in self.entradas if e.status == StatusEntrada.PENDING]
        return sorted(pendentes, key=lambda e: (e.prioridade.ordem, e.sequencia))

    def proxima(self) -> Optional[EntradaFila]:
        """Primeira entrada pendente na ordem de prioridade (sem consultar o governador)."""
        pendentes = self._pendentes()
        return pendentes[0] if pendentes else None

    def selecionar(self, agora: Optional[float] = None) -> tuple[Optional[EntradaFila], Optional[DecisaoEnvio]]:
        """
        Escolhe a próxima entrada que o governador admite.

        Negações por contato (warmup) passam para a próxima entrada; negações
        globais (risco, limites, intervalo) encerram a busca.

        Returns:
            (entrada, None) se há entrada admitida; (None, negação) caso contrário
        """
        agora = self._relogio() if agora is None else agora
        menor_espera: Optional[float] = None
        ultima_negacao: Optional[DecisaoEnvio] = None

        for entrada in self._pendentes():
            if entrada.ultima_tentativa_em is not None:
                restante = self.config.espera_retentativa_segundos - (agora - entrada.ultima_tentativa_em)
                if restante > 0:
                    menor_espera = restante if menor_espera is None else min(menor_espera, restante)
                    continue

            decisao = self.governador.pode_enviar(entrada.destino, agora)
            if decisao.permitido:
                return entrada, None

            if decisao.codigo is None or not decisao.codigo.por_contato:
                return None, decisao

            ultima_negacao = decisao
            if decisao.espera_segundos is not None:
                menor_espera = (
                    decisao.espera_segundos
                    if menor_espera is None
                    else min(menor_espera, decisao.espera_segundos)
                )

        if ultima_negacao is None and menor_espera is None:
            return None, None

        return None, DecisaoEnvio(
            permitido=False,
            motivo=ultima_negacao.motivo if ultima_negacao else "Aguardando janela de retentativa",
            espera_segundos=menor_espera,
            codigo=ultima_negacao.codigo if ultima_negacao else None,
        )

    # Passo do worker

    async def processar_proxima(self) -> Optional[ResultadoEnvio]:
        """
        Executa um passo do worker.

        1. Pausa longa se o lote encheu
        2. Seleciona entrada admitida (ou espera a dica da negação)
        3. Espera o espaçamento com jitter desde o último envio
        4. Simula digitação e envia

        Returns:
            ResultadoEnvio do envio feito, None se nada foi enviado
        """
        if self.enviadas_no_lote >= self.config.tamanho_lote:
            pausa = jitter(self.config.pausa_lote_segundos, self.config.variancia_pausa, self._rng)
            logger.info(f"[Fila] Pausa de lote: {pausa:.0f}s após {self.enviadas_no_lote} envios")
            await self._sleep(pausa)
            self.enviadas_no_lote = 0
            if self._parando:
                return None

        entrada, negacao = self.selecionar()

        if entrada is None:
            if negacao is None:
                return None
            espera = negacao.espera_segundos
            if espera is None or espera <= 0:
                espera = self.config.espera_padrao_segundos
            logger.debug(f"[Fila] Aguardando {espera:.1f}s: {negacao.motivo}")
            await self._sleep(espera)
            return None

        restante = self._restante_espacamento()
        if restante > 0:
            logger.debug(f"[Fila] Espaçamento: aguardando {restante:.1f}s")
            await self._sleep(restante)
            return None

        return await self._enviar(entrada)

    def _restante_espacamento(self) -> float:
        if self._liberado_em is None:
            return 0.0
        return self._liberado_em - self._relogio()

    def _sortear_espacamento(self):
        espacamento = self.governador.ajustar_delay(
            jitter(self.config.pacing_base_segundos, self.config.variancia_pacing, self._rng)
        )
        self._liberado_em = self._relogio() + espacamento

    async def _enviar(self, entrada: EntradaFila) -> ResultadoEnvio:
        agora = self._relogio()
        entrada.status = StatusEntrada.SENDING
        entrada.ultima_tentativa_em = agora
        self._salvar()

        try:
            if self.config.simular_digitacao:
                await self._simular_digitacao(entrada)

            handle = await self.transporte.enviar_mensagem(
                entrada.destino,
                entrada.conteudo,
                entrada.referencia_resposta,
            )
        except Exception as e:
            resultado = self._registrar_falha(entrada, e)
        else:
            resultado = self._registrar_sucesso(entrada, handle)

        self._notificar(resultado)
        return resultado

    async def _simular_digitacao(self, entrada: EntradaFila):
        duracao = self.governador.ajustar_delay(
            calcular_tempo_digitacao(entrada.conteudo, rng=self._rng)
        )
        # Falha de presença não impede o envio
        try:
            await self.transporte.inscrever_presenca(entrada.destino)
            await self.transporte.atualizar_presenca(entrada.destino, PRESENCA_DIGITANDO)
        except Exception as e:
            logger.warning(f"[Fila] Falha ao atualizar presença: {e}")

        await self._sleep(duracao)

        try:
            await self.transporte.atualizar_presenca(entrada.destino, PRESENCA_PAUSADO)
        except Exception as e:
            logger.warning(f"[Fila] Falha ao atualizar presença: {e}")

    def _registrar_sucesso(self, entrada: EntradaFila, handle: Any = None) -> ResultadoEnvio:
        self.entradas.remove(entrada)
        self._salvar()

        self.enviadas_no_lote += 1
        self.governador.registrar_envio(entrada.destino)
        self.risco.registrar_sucesso()
        self._sortear_espacamento()

        logger.info(f"[Fila] Enviada {entrada.id} ({len(self._pendentes())} restante(s))")
        return ResultadoEnvio(
            entrada_id=entrada.id,
            destino=entrada.destino,
            sucesso=True,
            status="sent",
            tentativas=entrada.tentativas + 1,
            extras={"mensagem_id": _id_mensagem(handle)},
        )

    def _registrar_falha(self, entrada: EntradaFila, erro: Exception) -> ResultadoEnvio:
        entrada.tentativas += 1
        entrada.ultimo_erro = str(erro)

        logger.error(f"[Fila] Falha ao enviar {entrada.id} (tentativa {entrada.tentativas}): {erro}")

        self.risco.registrar_falha(str(erro))

        inalcancavel = isinstance(erro, TransporteError) and not erro.retentavel
        limite_taxa = isinstance(erro, TransporteError) and erro.limite_taxa
        if limite_taxa:
            self.risco.registrar_rate_limit()
        if inalcancavel:
            self.risco.registrar_bloqueio(entrada.destino)

        if inalcancavel or entrada.tentativas >= self.config.max_tentativas:
            entrada.status = StatusEntrada.DEAD
            logger.warning(
                f"[Fila] {entrada.id} movida para dead letter "
                f"({'destino inalcançável' if inalcancavel else 'tentativas esgotadas'})"
            )
        else:
            entrada.status = StatusEntrada.PENDING
            entrada.prioridade = Prioridade.LOW
            entrada.sequencia = self._proxima_sequencia()

        self._salvar()

        return ResultadoEnvio(
            entrada_id=entrada.id,
            destino=entrada.destino,
            sucesso=False,
            status=entrada.status.value,
            tentativas=entrada.tentativas,
            erro=entrada.ultimo_erro,
            extras={"inalcancavel": inalcancavel, "limite_taxa": limite_taxa},
        )

    def _notificar(self, resultado: ResultadoEnvio):
        if not self.ao_resultado:
            return
        try:
            self.ao_resultado(resultado)
        except Exception as e:
            logger.error(f"[Fila] Erro no callback de resultado: {e}", exc_info=True)

    # Worker

    @property
    def processando(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def _parando(self) -> bool:
        return self._parar_evento is not None and self._parar_evento.is_set()

    def iniciar(self) -> bool:
        """
        Inicia o worker (idempotente). Requer event loop rodando.

        Returns:
            True se iniciou agora, False se já estava rodando
        """
        if self.processando:
            return False

        self._parar_evento = asyncio.Event()
        self._nova_entrada = asyncio.Event()
        self._task = safe_create_task(self._executar(), name="fila_entrega")
        logger.info("[Fila] Worker iniciado")
        return True

    async def parar(self):
        """
        Para o worker. Interrompe esperas, nunca um envio em andamento.
        """
        if not self.processando:
            return

        self._parar_evento.set()
        self._nova_entrada.set()
        await self._task
        self._task = None
        logger.info("[Fila] Worker parado")

    async def _executar(self):
        while not self._parando:
            if not self._pendentes():
                self._nova_entrada.clear()
                await self._nova_entrada.wait()
                continue

            try:
                await self.processar_proxima()
            except Exception as e:
                logger.error(f"[Fila] Erro no worker: {e}", exc_info=True)
                await self._sleep(self.config.espera_padrao_segundos)

    def _acordar(self):
        if self._nova_entrada is not None:
            self._nova_entrada.set()

    async def _esperar(self, segundos: float):
        """Espera que termina antes se o worker for parado."""
        if segundos <= 0:
            return
        if self._parar_evento is None:
            await asyncio.sleep(segundos)
            return
        try:
            await asyncio.wait_for(self._parar_evento.wait(), timeout=segundos)
        except asyncio.TimeoutError:
            pass

    # Operador

    def tentar_mortas(self) -> int:
        """
        Devolve entradas dead para pending com tentativas zeradas.

        Returns:
            Quantidade de entradas ressuscitadas
        """
        total = 0
        for entrada in self.entradas:
            if entrada.status == StatusEntrada.DEAD:
                entrada.status = StatusEntrada.PENDING
                entrada.tentativas = 0
                entrada.ultima_tentativa_em = None
                total += 1

        if total:
            self._salvar()
            logger.info(f"[Fila] {total} entrada(s) dead devolvida(s) para a fila")
            self._acordar()
        return total

    def limpar(self, apenas_mortas: bool = False) -> int:
        """Remove entradas (todas ou só as dead). Retorna quantas removeu."""
        antes = len(self.entradas)
        if apenas_mortas:
            self.entradas = [e for e in self.entradas if e.status != StatusEntrada.DEAD]
        else:
            self.entradas = []
        removidas = antes - len(self.entradas)
        self._salvar()
        return removidas

    def status(self) -> dict:
        contagem = {s.value: 0 for s in StatusEntrada}
        for entrada in self.entradas:
            contagem[entrada.status.value] += 1

        return {
            **contagem,
            "total": len(self.entradas),
            "processando": self.processando,
            "enviadas_no_lote": self.enviadas_no_lote,
            "tamanho_lote": self.config.tamanho_lote,
            "entradas": [
                {
                    "id": e.id,
                    "destino": e.destino,
                    "prioridade": e.prioridade.value,
                    "status": e.status.value,
                    "tentativas": e.tentativas,
                    "criado_em": e.criado_em,
                }
                for e in self.entradas
            ],
        }

    # Persistência

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        recuperadas = 0
        for item in dados.get("entradas") or []:
            try:
                entrada = EntradaFila.from_dict(item)
            except (KeyError, ValueError) as e:
                logger.warning(f"[Fila] Entrada inválida ignorada no snapshot: {e}")
                continue

            # Envio interrompido: status sending nunca é confiável após restart
            if entrada.status in (StatusEntrada.SENDING, StatusEntrada.FAILED):
                entrada.status = StatusEntrada.PENDING
                recuperadas += 1

            self.entradas.append(entrada)

        self._sequencia = max(
            [dados.get("sequencia", 0)] + [e.sequencia for e in self.entradas]
        )

        if self.entradas:
            logger.info(
                f"[Fila] {len(self.entradas)} entrada(s) restaurada(s), "
                f"{recuperadas} recuperada(s) de envio interrompido"
            )

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "entradas": [e.to_dict() for e in self.entradas],
            "sequencia": self._sequencia,
        }, self._relogio())
