"""
Configurações do motor de entrega.
Carrega variáveis de ambiente (.env) e monta as configs tipadas de cada componente.
"""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from entrega.core.exceptions import ConfiguracaoError
from entrega.services.fila import FilaConfig
from entrega.services.modificadores import CalendarioConfig, RampaConfig
from entrega.services.recibos import RecibosConfig
from entrega.services.reconexao import ReconexaoConfig
from entrega.services.risco import RiscoConfig
from entrega.services.warmup_contato import WarmupConfig
from entrega.services.webhooks.gerenciador import NotificacaoConfig

BACKENDS_PERSISTENCIA = ("arquivo", "redis", "memoria")


class Settings(BaseSettings):
    """Configurações carregadas do .env"""

    # App
    APP_NAME: str = "Entrega WhatsApp"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Sessão / persistência
    # SESSIONS_DIR/SESSION_ID vira o diretório de snapshots da conta
    SESSIONS_DIR: str = "./sessions"
    SESSION_ID: str = "default"
    STORAGE_BACKEND: str = "arquivo"  # arquivo | redis | memoria
    REDIS_URL: str = "redis://localhost:6379/0"

    # Maturidade da conta (semanas desde a criação)
    ACCOUNT_AGE_WEEKS: float = 1

    # Webhook de notificações (vazio = desativado)
    WEBHOOK_URL: str = ""
    WEBHOOK_SECRET: str = ""
    WEBHOOK_MAX_TENTATIVAS: int = 5
    WEBHOOK_BASE_DELAY_SEGUNDOS: float = 1.0
    WEBHOOK_MAX_DELAY_SEGUNDOS: float = 60.0
    WEBHOOK_INTERVALO_REPROCESSAMENTO_SEGUNDOS: float = 60.0
    WEBHOOK_TETO_TENTATIVAS: int = 10

    # Fila de envio
    FILA_MAX_TENTATIVAS: int = 2
    FILA_TAMANHO_LOTE: int = 3
    FILA_PAUSA_LOTE_SEGUNDOS: float = 300.0
    FILA_SIMULAR_DIGITACAO: bool = True
    FILA_PACING_BASE_SEGUNDOS: float = 30.0
    FILA_VARIANCIA_PACING: float = 0.4

    # Reconexão
    RECONEXAO_BASE_SEGUNDOS: float = 1.0
    RECONEXAO_MAX_SEGUNDOS: float = 300.0
    RECONEXAO_MAX_TENTATIVAS: int = 10

    # Recibos de entrega (detecção de bloqueio)
    RECIBOS_MENSAGENS_SEM_ENTREGA: int = 3
    RECIBOS_TIMEOUT_BLOQUEIO_HORAS: float = 24

    # Warmup por contato
    WARMUP_PERIODO_DIAS: float = 7

    # Calendário (datas MM-DD separadas por vírgula)
    FERIADOS: str = "01-01,12-25,12-31"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignora variáveis extras do .env

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def diretorio_sessao(self) -> Path:
        """Diretório de snapshots da conta ativa."""
        return Path(self.SESSIONS_DIR) / self.SESSION_ID

    @property
    def feriados_list(self) -> list[str]:
        return [f.strip() for f in self.FERIADOS.split(",") if f.strip()]

    def validar(self) -> None:
        """
        Valida combinações que o pydantic não cobre sozinho.

        Raises:
            ConfiguracaoError: Se algum valor for inconsistente
        """
        if self.STORAGE_BACKEND not in BACKENDS_PERSISTENCIA:
            raise ConfiguracaoError(
                f"STORAGE_BACKEND inválido: {self.STORAGE_BACKEND}",
                details={"permitidos": list(BACKENDS_PERSISTENCIA)},
            )
        if self.ACCOUNT_AGE_WEEKS < 0:
            raise ConfiguracaoError("ACCOUNT_AGE_WEEKS não pode ser negativo")
        if self.WEBHOOK_TETO_TENTATIVAS < self.WEBHOOK_MAX_TENTATIVAS:
            raise ConfiguracaoError(
                "WEBHOOK_TETO_TENTATIVAS deve ser >= WEBHOOK_MAX_TENTATIVAS",
                details={
                    "teto": self.WEBHOOK_TETO_TENTATIVAS,
                    "max_tentativas": self.WEBHOOK_MAX_TENTATIVAS,
                },
            )

    # Configs tipadas por componente

    def config_fila(self) -> FilaConfig:
        return FilaConfig(
            max_tentativas=self.FILA_MAX_TENTATIVAS,
            tamanho_lote=self.FILA_TAMANHO_LOTE,
            pausa_lote_segundos=self.FILA_PAUSA_LOTE_SEGUNDOS,
            simular_digitacao=self.FILA_SIMULAR_DIGITACAO,
            pacing_base_segundos=self.FILA_PACING_BASE_SEGUNDOS,
            variancia_pacing=self.FILA_VARIANCIA_PACING,
        )

    def config_reconexao(self) -> ReconexaoConfig:
        return ReconexaoConfig(
            base_segundos=self.RECONEXAO_BASE_SEGUNDOS,
            max_segundos=self.RECONEXAO_MAX_SEGUNDOS,
            max_tentativas=self.RECONEXAO_MAX_TENTATIVAS,
        )

    def config_warmup(self) -> WarmupConfig:
        return WarmupConfig(periodo_warmup_segundos=self.WARMUP_PERIODO_DIAS * 86400)

    def config_risco(self) -> RiscoConfig:
        return RiscoConfig()

    def config_rampa(self) -> RampaConfig:
        return RampaConfig()

    def config_calendario(self) -> CalendarioConfig:
        return CalendarioConfig(feriados=tuple(self.feriados_list))

    def config_recibos(self) -> RecibosConfig:
        return RecibosConfig(
            timeout_bloqueio_segundos=self.RECIBOS_TIMEOUT_BLOQUEIO_HORAS * 3600,
            mensagens_sem_entrega_bloqueio=self.RECIBOS_MENSAGENS_SEM_ENTREGA,
        )

    def config_notificacao(self) -> NotificacaoConfig:
        return NotificacaoConfig(
            url=self.WEBHOOK_URL,
            segredo=self.WEBHOOK_SECRET,
            max_tentativas=self.WEBHOOK_MAX_TENTATIVAS,
            base_delay_segundos=self.WEBHOOK_BASE_DELAY_SEGUNDOS,
            max_delay_segundos=self.WEBHOOK_MAX_DELAY_SEGUNDOS,
            intervalo_reprocessamento_segundos=self.WEBHOOK_INTERVALO_REPROCESSAMENTO_SEGUNDOS,
            teto_tentativas=self.WEBHOOK_TETO_TENTATIVAS,
        )


@lru_cache()
def get_settings() -> Settings:
    """Retorna instância cacheada das configurações."""
    return Settings()
