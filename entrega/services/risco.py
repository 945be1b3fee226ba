"""
Monitor de risco (sistema de alerta de banimento).

Sinais acompanhados em janelas móveis:
- Falhas de entrega / sucessos (1h)
- Rate limits recebidos da rede (1h)
- Quedas de conexão (1h)
- Bloqueios por destinatários (24h, atravessa a virada do dia)

Score composto -> nível:
- score >= 5: CRITICAL (entra em hibernação)
- score >= 3: HIGH
- score >= 1: ELEVATED
- senão: NORMAL

Hibernação só termina por ação do operador (sair_hibernacao) ou reset das métricas.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from entrega.core.relogio import DIA, HORA, Relogio, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.services.tipos import CodigoNegacao, DecisaoEnvio

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "ban-warning-metrics"


class NivelRisco(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def ordem(self) -> int:
        return _ORDEM_NIVEL[self]


_ORDEM_NIVEL = {
    NivelRisco.NORMAL: 0,
    NivelRisco.ELEVATED: 1,
    NivelRisco.HIGH: 2,
    NivelRisco.CRITICAL: 3,
}

RECOMENDACOES = {
    NivelRisco.ELEVATED: "Monitorar de perto. Considerar reduzir atividade.",
    NivelRisco.HIGH: "Reduzir frequência de envio. Apenas responder mensagens recebidas.",
    NivelRisco.CRITICAL: "PARAR TODA AUTOMAÇÃO. Hibernação ativada.",
}


@dataclass
class RiscoConfig:
    # Thresholds
    taxa_falha_entrega: float = 0.2        # 20% de falhas
    rate_limits_por_hora: int = 3
    quedas_conexao_por_hora: int = 5
    bloqueios_por_dia: int = 2
    # Acima de limite * fator_severo o sinal pesa mais
    fator_severo: float = 2.0

    # Pesos no score
    peso_falha_entrega: int = 2
    peso_rate_limit: int = 2
    peso_rate_limit_severo: int = 4
    peso_queda_conexao: int = 1
    peso_queda_conexao_severa: int = 2
    peso_bloqueio: int = 3

    # Limiares de nível
    score_elevated: int = 1
    score_high: int = 3
    score_critical: int = 5

    # Janelas
    janela_segundos: float = HORA
    janela_bloqueios_segundos: float = DIA


@dataclass
class AvaliacaoRisco:
    nivel: NivelRisco
    score: int
    avisos: list[str] = field(default_factory=list)


@dataclass
class AlertaRisco:
    """Payload entregue ao observador quando o nível sobe."""
    nivel: NivelRisco
    score: int
    avisos: list[str]
    recomendacao: str
    metricas: dict


def _nivel_seguro(valor: Optional[str]) -> NivelRisco:
    try:
        return NivelRisco(valor)
    except ValueError:
        return NivelRisco.NORMAL


class MonitorRisco:
    """
    Perfil de risco da conta.

    Recalcula após cada evento registrado e a cada consulta (as janelas
    expiram com o tempo). Chama `ao_alertar` somente quando o nível sobe.
    """

    EVENTOS = ("sucessos", "falhas", "rate_limits", "quedas", "bloqueios")

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        config: Optional[RiscoConfig] = None,
        relogio: Relogio = relogio_sistema,
        ao_alertar: Optional[Callable[[AlertaRisco], None]] = None,
    ):
        self._store = store
        self._relogio = relogio
        self.config = config or RiscoConfig()
        self.ao_alertar = ao_alertar

        self._eventos: dict[str, list[float]] = {nome: [] for nome in self.EVENTOS}
        self.nivel = NivelRisco.NORMAL
        self.hibernando = False
        self.ultimo_reset = relogio()

        self._carregar()

    # Registro de eventos

    def registrar_sucesso(self):
        self._registrar("sucessos")

    def registrar_falha(self, motivo: Optional[str] = None):
        logger.warning(f"[Risco] Falha de entrega: {motivo}")
        self._registrar("falhas")

    def registrar_rate_limit(self):
        logger.warning("[Risco] Rate limit recebido")
        self._registrar("rate_limits")

    def registrar_queda_conexao(self):
        self._registrar("quedas")

    def registrar_bloqueio(self, destino: Optional[str] = None):
        logger.warning(f"[Risco] Bloqueado por destinatário {destino[:8] + '...' if destino else ''}")
        self._registrar("bloqueios")

    def _registrar(self, evento: str):
        self._eventos[evento].append(self._relogio())
        self.avaliar()
        self._salvar()

    # Avaliação

    def _podar(self, agora: float):
        for nome, instantes in self._eventos.items():
            janela = (
                self.config.janela_bloqueios_segundos
                if nome == "bloqueios"
                else self.config.janela_segundos
            )
            self._eventos[nome] = [t for t in instantes if agora - t < janela]

    def contagens(self, agora: Optional[float] = None) -> dict[str, int]:
        agora = self._relogio() if agora is None else agora
        self._podar(agora)
        return {nome: len(instantes) for nome, instantes in self._eventos.items()}

    def taxa_falha(self, agora: Optional[float] = None) -> float:
        c = self.contagens(agora)
        total = c["sucessos"] + c["falhas"]
        if total == 0:
            return 0.0
        return c["falhas"] / total

    def calcular_score(self, agora: Optional[float] = None) -> AvaliacaoRisco:
        """Score composto a partir das contagens atuais (sem efeitos colaterais)."""
        cfg = self.config
        c = self.contagens(agora)
        taxa_falha = self.taxa_falha(agora)

        score = 0
        avisos = []

        if taxa_falha > cfg.taxa_falha_entrega:
            score += cfg.peso_falha_entrega
            avisos.append(f"Taxa de falha de entrega alta: {taxa_falha * 100:.1f}%")

        if c["rate_limits"] > cfg.rate_limits_por_hora * cfg.fator_severo:
            score += cfg.peso_rate_limit_severo
            avisos.append(f"Rate limits muito frequentes: {c['rate_limits']} na última hora")
        elif c["rate_limits"] > cfg.rate_limits_por_hora:
            score += cfg.peso_rate_limit
            avisos.append(f"Rate limits frequentes: {c['rate_limits']} na última hora")

        if c["quedas"] > cfg.quedas_conexao_por_hora * cfg.fator_severo:
            score += cfg.peso_queda_conexao_severa
            avisos.append(f"Conexão muito instável: {c['quedas']} quedas na última hora")
        elif c["quedas"] > cfg.quedas_conexao_por_hora:
            score += cfg.peso_queda_conexao
            avisos.append(f"Conexão instável: {c['quedas']} quedas na última hora")

        if c["bloqueios"] >= cfg.bloqueios_por_dia:
            score += cfg.peso_bloqueio
            avisos.append(f"Múltiplos bloqueios: {c['bloqueios']} nas últimas 24h")

        if score >= cfg.score_critical:
            nivel = NivelRisco.CRITICAL
        elif score >= cfg.score_high:
            nivel = NivelRisco.HIGH
        elif score >= cfg.score_elevated:
            nivel = NivelRisco.ELEVATED
        else:
            nivel = NivelRisco.NORMAL

        return AvaliacaoRisco(nivel=nivel, score=score, avisos=avisos)

    def avaliar(self, agora: Optional[float] = None) -> AvaliacaoRisco:
        """
        Recalcula o nível e dispara alerta se ele subiu.

        Chegar a CRITICAL ativa hibernação.
        """
        avaliacao = self.calcular_score(agora)
        anterior = self.nivel

        if avaliacao.nivel == anterior:
            return avaliacao

        self.nivel = avaliacao.nivel
        logger.info(f"[Risco] Nível {anterior.value} -> {avaliacao.nivel.value} (score={avaliacao.score})")

        if avaliacao.nivel.ordem > anterior.ordem:
            if avaliacao.nivel == NivelRisco.CRITICAL and not self.hibernando:
                self.hibernando = True
                logger.error("[Risco] Risco CRÍTICO: hibernação ativada")
            self._alertar(avaliacao)

        self._salvar()
        return avaliacao

    def _alertar(self, avaliacao: AvaliacaoRisco):
        if not self.ao_alertar:
            return
        alerta = AlertaRisco(
            nivel=avaliacao.nivel,
            score=avaliacao.score,
            avisos=avaliacao.avisos,
            recomendacao=RECOMENDACOES.get(avaliacao.nivel, ""),
            metricas=self._montar_metricas(),
        )
        try:
            self.ao_alertar(alerta)
        except Exception as e:
            logger.error(f"[Risco] Erro no callback de alerta: {e}", exc_info=True)

    def verificar(self) -> DecisaoEnvio:
        """Admissão pelo ponto de vista do risco."""
        self.avaliar()

        if self.hibernando:
            return DecisaoEnvio.negar(
                CodigoNegacao.HIBERNACAO,
                "Hibernação ativa por risco de banimento. Apenas responder mensagens recebidas.",
            )

        if self.nivel == NivelRisco.CRITICAL:
            return DecisaoEnvio.negar(
                CodigoNegacao.RISCO_CRITICO,
                "Risco crítico de banimento detectado. Envio bloqueado.",
            )

        return DecisaoEnvio.ok()

    # Ações do operador

    def sair_hibernacao(self):
        self.hibernando = False
        self.avaliar()
        logger.info("[Risco] Hibernação desativada pelo operador")
        self._salvar()

    def resetar_metricas(self):
        self._eventos = {nome: [] for nome in self.EVENTOS}
        self.nivel = NivelRisco.NORMAL
        self.hibernando = False
        self.ultimo_reset = self._relogio()
        logger.info("[Risco] Métricas resetadas")
        self._salvar()

    def metricas(self) -> dict:
        self.avaliar()
        return self._montar_metricas()

    def _montar_metricas(self) -> dict:
        agora = self._relogio()
        c = self.contagens(agora)
        return {
            "sucessos_entrega": c["sucessos"],
            "falhas_entrega": c["falhas"],
            "rate_limits": c["rate_limits"],
            "quedas_conexao": c["quedas"],
            "bloqueios": c["bloqueios"],
            "taxa_falha_entrega": round(self.taxa_falha(agora) * 100, 1),
            "nivel": self.nivel.value,
            "hibernando": self.hibernando,
            "horas_desde_reset": round((agora - self.ultimo_reset) / HORA, 1),
        }

    # Persistência

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        eventos = dados.get("eventos") or {}
        for nome in self.EVENTOS:
            self._eventos[nome] = [float(t) for t in eventos.get(nome, [])]
        self._podar(self._relogio())

        self.nivel = _nivel_seguro(dados.get("nivel"))
        # Hibernação sobrevive a restart e à virada do dia
        self.hibernando = bool(dados.get("hibernando", False))
        self.ultimo_reset = dados.get("ultimo_reset", self.ultimo_reset)

        # Eventos podados podem baixar o nível salvo
        self.avaliar()

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "eventos": self._eventos,
            "nivel": self.nivel.value,
            "hibernando": self.hibernando,
            "ultimo_reset": self.ultimo_reset,
        }, self._relogio())
