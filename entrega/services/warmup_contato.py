"""
Warmup por contato.

Limite diário de mensagens para um destino que cresce com o tempo desde o
primeiro contato:
- Primeiro dia: 2/dia
- Até o fim do período de warmup (7 dias): 5/dia
- Depois: 20/dia
"""
import logging
import math
from dataclasses import asdict, dataclass
from typing import Optional

from entrega.core.relogio import DIA, Relogio, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.services.tipos import CodigoNegacao, DecisaoEnvio

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "contact-warmup"


@dataclass
class WarmupConfig:
    periodo_warmup_segundos: float = 7 * DIA
    limite_inicial: int = 2       # primeiro dia
    limite_warmup: int = 5        # durante o warmup
    limite_normal: int = 20       # após o warmup


@dataclass
class RegistroWarmup:
    primeiro_contato: float
    total_mensagens: int
    mensagens_periodo: int
    inicio_periodo: float
    ultima_mensagem: float


class WarmupContatos:
    """Controla volume por destino durante o aquecimento."""

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        config: Optional[WarmupConfig] = None,
        relogio: Relogio = relogio_sistema,
    ):
        self._store = store
        self._relogio = relogio
        self.config = config or WarmupConfig()
        self.contatos: dict[str, RegistroWarmup] = {}
        self._carregar()

    def limite_diario(self, idade_contato: float) -> int:
        """Limite do período para um contato com essa idade (segundos)."""
        if idade_contato < DIA:
            return self.config.limite_inicial
        if idade_contato < self.config.periodo_warmup_segundos:
            return self.config.limite_warmup
        return self.config.limite_normal

    def _mensagens_no_periodo(self, registro: RegistroWarmup, agora: float) -> int:
        # Período vencido conta como vazio mesmo antes do próximo registro
        if agora - registro.inicio_periodo >= DIA:
            return 0
        return registro.mensagens_periodo

    def verificar(self, destino: str, agora: Optional[float] = None) -> DecisaoEnvio:
        """Pode enviar para este destino agora?"""
        agora = self._relogio() if agora is None else agora
        registro = self.contatos.get(destino)

        if registro is None:
            return DecisaoEnvio.ok()

        idade = agora - registro.primeiro_contato
        limite = self.limite_diario(idade)
        enviadas = self._mensagens_no_periodo(registro, agora)

        if enviadas >= limite:
            espera = DIA - (agora - registro.inicio_periodo)
            return DecisaoEnvio.negar(
                CodigoNegacao.WARMUP_CONTATO,
                f"Limite diário para este contato atingido ({limite}/dia, "
                f"contato com {int(idade // DIA)} dia(s))",
                espera_segundos=max(espera, 0.0),
            )

        return DecisaoEnvio.ok()

    def registrar(self, destino: str, agora: Optional[float] = None):
        """Registra mensagem enviada para o destino."""
        agora = self._relogio() if agora is None else agora
        registro = self.contatos.get(destino)

        if registro is None:
            self.contatos[destino] = RegistroWarmup(
                primeiro_contato=agora,
                total_mensagens=1,
                mensagens_periodo=1,
                inicio_periodo=agora,
                ultima_mensagem=agora,
            )
        else:
            registro.total_mensagens += 1
            registro.ultima_mensagem = agora

            if agora - registro.inicio_periodo >= DIA:
                registro.mensagens_periodo = 1
                registro.inicio_periodo = agora
            else:
                registro.mensagens_periodo += 1

        self._salvar()

    def status_contato(self, destino: str, agora: Optional[float] = None) -> dict:
        agora = self._relogio() if agora is None else agora
        periodo_dias = math.ceil(self.config.periodo_warmup_segundos / DIA)
        registro = self.contatos.get(destino)

        if registro is None:
            return {
                "status": "novo",
                "dias_warmup_restantes": periodo_dias,
                "limite_diario": self.config.limite_inicial,
            }

        idade = agora - registro.primeiro_contato
        restantes = max(0, math.ceil((self.config.periodo_warmup_segundos - idade) / DIA))
        limite = self.limite_diario(idade)
        enviadas = self._mensagens_no_periodo(registro, agora)

        return {
            "status": "aquecendo" if restantes > 0 else "aquecido",
            "primeiro_contato": registro.primeiro_contato,
            "total_mensagens": registro.total_mensagens,
            "mensagens_periodo": enviadas,
            "limite_diario": limite,
            "restante_hoje": max(0, limite - enviadas),
            "dias_warmup_restantes": restantes,
        }

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        for destino, registro in (dados.get("contatos") or {}).items():
            try:
                self.contatos[destino] = RegistroWarmup(**registro)
            except TypeError:
                logger.warning(f"[Warmup] Registro inválido ignorado: {destino[:8]}...")

    def _salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "contatos": {destino: asdict(r) for destino, r in self.contatos.items()},
        }, self._relogio())
