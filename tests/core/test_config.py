"""
Testes das configurações.
"""
import pytest
from pathlib import Path

from entrega.core.config import Settings
from entrega.core.exceptions import ConfiguracaoError


def _settings(**kwargs) -> Settings:
    # _env_file=None: não ler .env da máquina
    return Settings(_env_file=None, **kwargs)


class TestSettings:

    def test_defaults(self):
        settings = _settings()

        assert settings.STORAGE_BACKEND == "arquivo"
        assert settings.FILA_MAX_TENTATIVAS == 2
        assert settings.WEBHOOK_MAX_TENTATIVAS == 5
        assert settings.WEBHOOK_TETO_TENTATIVAS == 10
        assert not settings.is_production

    def test_le_variaveis_de_ambiente(self, monkeypatch):
        monkeypatch.setenv("ACCOUNT_AGE_WEEKS", "6")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("WEBHOOK_URL", "https://exemplo.com/hook")

        settings = _settings()

        assert settings.ACCOUNT_AGE_WEEKS == 6
        assert settings.is_production
        assert settings.WEBHOOK_URL == "https://exemplo.com/hook"

    def test_diretorio_sessao(self):
        settings = _settings(SESSIONS_DIR="/tmp/sessoes", SESSION_ID="conta1")
        assert settings.diretorio_sessao == Path("/tmp/sessoes/conta1")

    def test_feriados_list(self):
        settings = _settings(FERIADOS=" 01-01, 04-21 ,,12-25")
        assert settings.feriados_list == ["01-01", "04-21", "12-25"]


class TestValidar:

    def test_backend_invalido(self):
        with pytest.raises(ConfiguracaoError) as exc:
            _settings(STORAGE_BACKEND="sqlite").validar()
        assert "STORAGE_BACKEND" in exc.value.message

    def test_idade_negativa(self):
        with pytest.raises(ConfiguracaoError):
            _settings(ACCOUNT_AGE_WEEKS=-1).validar()

    def test_teto_menor_que_tentativas_inline(self):
        with pytest.raises(ConfiguracaoError):
            _settings(WEBHOOK_MAX_TENTATIVAS=5, WEBHOOK_TETO_TENTATIVAS=3).validar()

    def test_configuracao_valida(self):
        _settings(STORAGE_BACKEND="memoria").validar()


class TestConfigsTipadas:

    def test_config_fila(self):
        config = _settings(FILA_MAX_TENTATIVAS=4, FILA_TAMANHO_LOTE=5).config_fila()
        assert config.max_tentativas == 4
        assert config.tamanho_lote == 5
        assert config.pausa_lote_segundos == 300.0

    def test_config_fila_pacing(self):
        config = _settings(FILA_PACING_BASE_SEGUNDOS=45, FILA_VARIANCIA_PACING=0.2).config_fila()
        assert config.pacing_base_segundos == 45
        assert config.variancia_pacing == 0.2

    def test_config_recibos(self):
        config = _settings(RECIBOS_TIMEOUT_BLOQUEIO_HORAS=12, RECIBOS_MENSAGENS_SEM_ENTREGA=5).config_recibos()
        assert config.timeout_bloqueio_segundos == 12 * 3600
        assert config.mensagens_sem_entrega_bloqueio == 5

    def test_config_warmup_em_segundos(self):
        config = _settings(WARMUP_PERIODO_DIAS=3).config_warmup()
        assert config.periodo_warmup_segundos == 3 * 86400

    def test_config_calendario(self):
        config = _settings(FERIADOS="11-15").config_calendario()
        assert config.feriados == ("11-15",)

    def test_config_notificacao(self):
        config = _settings(WEBHOOK_URL="https://x", WEBHOOK_SECRET="s3", WEBHOOK_MAX_TENTATIVAS=3).config_notificacao()
        assert config.url == "https://x"
        assert config.segredo == "s3"
        assert config.max_tentativas == 3
        assert config.teto_tentativas == 10

    def test_config_reconexao(self):
        config = _settings(RECONEXAO_MAX_TENTATIVAS=4).config_reconexao()
        assert config.max_tentativas == 4
        assert config.base_segundos == 1.0
