"""
Testes da configuração de logging.
"""
import json
import logging

import pytest

from entrega.core.logging import ColoredFormatter, JSONFormatter, setup_logging


def _record(msg: str = "mensagem", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="entrega.teste",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def restaurar_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestJSONFormatter:

    def test_gera_json(self):
        saida = json.loads(JSONFormatter().format(_record("[Fila] enviada")))

        assert saida["message"] == "[Fila] enviada"
        assert saida["level"] == "INFO"
        assert saida["logger"] == "entrega.teste"

    def test_inclui_extra_fields(self):
        record = _record()
        record.extra_fields = {"entrada_id": "pq_1"}

        saida = json.loads(JSONFormatter().format(record))

        assert saida["entrada_id"] == "pq_1"


class TestColoredFormatter:

    def test_nao_altera_record_original(self):
        record = _record(level=logging.WARNING)
        ColoredFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert record.levelname == "WARNING"


class TestSetupLogging:

    def test_producao_usa_json(self, restaurar_root_logger):
        handler = setup_logging(environment="production", log_level="debug")

        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_desenvolvimento_usa_cores(self, restaurar_root_logger):
        handler = setup_logging(environment="development", log_level="INFO")

        assert isinstance(handler.formatter, ColoredFormatter)
        assert logging.getLogger().handlers == [handler]
