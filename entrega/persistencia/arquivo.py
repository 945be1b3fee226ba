"""
Store de snapshots em arquivos JSON no diretório da sessão.

Cada chave vira `.<chave>.json` (ex: `.message-queue.json`).
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from entrega.core.exceptions import PersistenciaError
from entrega.persistencia.base import SnapshotStore

logger = logging.getLogger(__name__)


class ArquivoSnapshotStore(SnapshotStore):
    """Snapshots como arquivos JSON em um diretório por conta."""

    def __init__(self, diretorio: Union[str, Path]):
        self.diretorio = Path(diretorio)

    def _caminho(self, chave: str) -> Path:
        return self.diretorio / f".{chave}.json"

    def carregar(self, chave: str) -> Optional[dict]:
        caminho = self._caminho(chave)
        if not caminho.exists():
            return None

        try:
            with open(caminho, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenciaError(
                f"Erro ao ler snapshot {caminho.name}", chave=chave, original_error=e
            ) from e

    def salvar(self, chave: str, dados: dict) -> None:
        caminho = self._caminho(chave)
        try:
            self.diretorio.mkdir(parents=True, exist_ok=True)
            # Grava em arquivo temporário e troca, para nunca deixar JSON pela metade
            fd, tmp = tempfile.mkstemp(dir=self.diretorio, prefix=f".{chave}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(dados, f, ensure_ascii=False, indent=2)
                os.replace(tmp, caminho)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenciaError(
                f"Erro ao gravar snapshot {caminho.name}", chave=chave, original_error=e
            ) from e

    def remover(self, chave: str) -> None:
        try:
            self._caminho(chave).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenciaError("Erro ao remover snapshot", chave=chave, original_error=e) from e
