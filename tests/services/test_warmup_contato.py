"""
Testes do warmup por contato.
"""
import pytest

from entrega.core.relogio import DIA, HORA
from entrega.services.tipos import CodigoNegacao
from entrega.services.warmup_contato import WarmupConfig, WarmupContatos

DESTINO = "5511999990001"


class TestLimiteDiario:

    @pytest.mark.parametrize("idade,limite", [
        (0, 2),
        (DIA - 1, 2),
        (DIA, 5),
        (6 * DIA, 5),
        (7 * DIA, 20),
        (30 * DIA, 20),
    ])
    def test_limite_por_idade(self, idade, limite):
        assert WarmupContatos().limite_diario(idade) == limite

    def test_periodo_configuravel(self):
        warmup = WarmupContatos(config=WarmupConfig(periodo_warmup_segundos=2 * DIA))
        assert warmup.limite_diario(2 * DIA) == 20


class TestVerificar:

    def test_contato_novo_liberado(self, relogio):
        assert WarmupContatos(relogio=relogio).verificar(DESTINO).permitido

    def test_primeiro_dia_limita_a_dois(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        relogio.avancar(HORA)
        warmup.registrar(DESTINO)
        relogio.avancar(HORA)

        decisao = warmup.verificar(DESTINO)

        assert not decisao.permitido
        assert decisao.codigo == CodigoNegacao.WARMUP_CONTATO
        assert decisao.codigo.por_contato
        assert decisao.espera_segundos == pytest.approx(DIA - 2 * HORA)

    def test_outro_contato_nao_afetado(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        warmup.registrar(DESTINO)

        assert warmup.verificar("5511999990002").permitido

    def test_periodo_vencido_conta_como_vazio(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        warmup.registrar(DESTINO)

        relogio.avancar(DIA)

        assert warmup.verificar(DESTINO).permitido

    def test_novo_periodo_reinicia_contagem(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        relogio.avancar(DIA + 1)
        warmup.registrar(DESTINO)

        registro = warmup.contatos[DESTINO]
        assert registro.mensagens_periodo == 1
        assert registro.total_mensagens == 2
        assert registro.inicio_periodo == relogio()


class TestStatusEPersistencia:

    def test_status_contato_novo(self, relogio):
        status = WarmupContatos(relogio=relogio).status_contato(DESTINO)
        assert status == {"status": "novo", "dias_warmup_restantes": 7, "limite_diario": 2}

    def test_status_aquecendo(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        relogio.avancar_dias(2)
        warmup.registrar(DESTINO)

        status = warmup.status_contato(DESTINO)

        assert status["status"] == "aquecendo"
        assert status["limite_diario"] == 5
        assert status["restante_hoje"] == 4
        assert status["dias_warmup_restantes"] == 5

    def test_status_aquecido(self, relogio):
        warmup = WarmupContatos(relogio=relogio)
        warmup.registrar(DESTINO)
        relogio.avancar_dias(8)

        assert warmup.status_contato(DESTINO)["status"] == "aquecido"

    def test_restaura_do_store(self, relogio, store):
        WarmupContatos(store, relogio=relogio).registrar(DESTINO)

        restaurado = WarmupContatos(store, relogio=relogio)

        assert restaurado.contatos[DESTINO].total_mensagens == 1
        assert restaurado.contatos[DESTINO].primeiro_contato == relogio()
