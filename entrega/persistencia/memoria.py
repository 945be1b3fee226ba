"""Store em memória (testes e execução sem disco)."""
import copy
from typing import Optional

from entrega.persistencia.base import SnapshotStore


class MemoriaSnapshotStore(SnapshotStore):

    def __init__(self):
        self.snapshots: dict[str, dict] = {}

    def carregar(self, chave: str) -> Optional[dict]:
        dados = self.snapshots.get(chave)
        return copy.deepcopy(dados) if dados is not None else None

    def salvar(self, chave: str, dados: dict) -> None:
        self.snapshots[chave] = copy.deepcopy(dados)

    def remover(self, chave: str) -> None:
        self.snapshots.pop(chave, None)
