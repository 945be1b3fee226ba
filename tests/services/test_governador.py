"""
Testes do governador de envio (admissão combinada).
"""
from datetime import datetime

import pytest

from entrega.core.relogio import HORA
from entrega.services.governador import GovernadorEnvio
from entrega.services.modificadores import PadraoCalendario, RampaAtividade
from entrega.services.rate_limiter import OrcamentoTaxa
from entrega.services.risco import MonitorRisco
from entrega.services.tipos import CodigoNegacao
from entrega.services.warmup_contato import WarmupContatos

SABADO = datetime(2024, 3, 16, 12, 0).timestamp()


def _governador(relogio, semanas=8, rampa=False, calendario=False):
    return GovernadorEnvio(
        orcamento=OrcamentoTaxa(semanas_conta=semanas, relogio=relogio),
        warmup=WarmupContatos(relogio=relogio),
        risco=MonitorRisco(relogio=relogio),
        rampa=RampaAtividade(relogio=relogio) if rampa else None,
        calendario=PadraoCalendario(relogio=relogio) if calendario else None,
        relogio=relogio,
    )


def _hibernar(risco: MonitorRisco):
    for _ in range(7):
        risco.registrar_rate_limit()
    for _ in range(6):
        risco.registrar_queda_conexao()


class TestOrdemDeAvaliacao:

    def test_tudo_liberado(self, relogio):
        assert _governador(relogio).pode_enviar("5511999990001").permitido

    def test_hibernacao_nega_mesmo_com_orcamento(self, relogio):
        governador = _governador(relogio)
        _hibernar(governador.risco)

        decisao = governador.pode_enviar("5511999990001")

        assert not decisao.permitido
        assert decisao.codigo == CodigoNegacao.HIBERNACAO
        assert governador.orcamento.contagem_dia == 0

    def test_risco_antes_do_warmup(self, relogio):
        governador = _governador(relogio)
        governador.registrar_envio("a")
        governador.registrar_envio("a")
        _hibernar(governador.risco)

        assert governador.pode_enviar("a").codigo == CodigoNegacao.HIBERNACAO

    def test_warmup_antes_do_orcamento(self, relogio):
        governador = _governador(relogio)
        governador.registrar_envio("a")
        relogio.avancar(60)
        governador.registrar_envio("a")

        # intervalo ainda não passou, mas o warmup vence
        assert governador.pode_enviar("a").codigo == CodigoNegacao.WARMUP_CONTATO
        assert governador.pode_enviar("b").codigo == CodigoNegacao.INTERVALO_MINIMO

        relogio.avancar(30)
        assert governador.pode_enviar("b").permitido

    def test_limite_por_hora(self, relogio):
        governador = _governador(relogio, semanas=1)
        for i in range(5):
            governador.registrar_envio(f"dest-{i}")
            relogio.avancar(180)

        decisao = governador.pode_enviar("outro")

        assert decisao.codigo == CodigoNegacao.LIMITE_HORA
        assert decisao.espera_segundos == pytest.approx(HORA - 5 * 180)

        relogio.avancar(decisao.espera_segundos)
        assert governador.pode_enviar("outro").permitido


class TestModificadores:

    def test_sem_modificadores_usa_tier(self, relogio):
        governador = _governador(relogio)

        assert governador.limites_efetivos() == (30, 150)
        assert governador.multiplicador_delay() == 1.0

    def test_fim_de_semana_reduz_limites_e_alonga_intervalo(self, relogio):
        relogio.agora = SABADO
        governador = _governador(relogio, calendario=True)

        assert governador.limites_efetivos() == (18, 90)

        governador.registrar_envio("a")
        relogio.avancar(40)
        assert governador.pode_enviar("b").codigo == CodigoNegacao.INTERVALO_MINIMO

        relogio.avancar(5)
        assert governador.pode_enviar("b").permitido

    def test_rampa_depois_calendario(self, relogio):
        relogio.agora = SABADO
        governador = _governador(relogio, rampa=True, calendario=True)
        relogio.avancar(HORA)

        # 30 * 0.25 = 7 -> 7 * 0.6 = 4
        assert governador.limites_efetivos() == (4, 22)
        assert governador.multiplicador_delay() == pytest.approx(1.75 * 1.5)
        assert governador.ajustar_delay(2.0) == pytest.approx(5.25)

    def test_registrar_envio_alimenta_componentes(self, relogio):
        governador = _governador(relogio, rampa=True)
        relogio.avancar(10)

        governador.registrar_envio("a")

        assert governador.orcamento.contagem_hora == 1
        assert governador.warmup.contatos["a"].total_mensagens == 1
        assert governador.rampa.ultima_atividade == relogio()

    def test_estatisticas_taxa(self, relogio):
        stats = _governador(relogio, rampa=True, calendario=True).estatisticas_taxa()

        assert stats["limite_hora_efetivo"] == 30
        assert stats["calendario"]["dia_semana"] == "quarta"
        assert stats["rampa"]["em_rampa"] is False
