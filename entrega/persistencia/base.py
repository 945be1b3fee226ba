"""
Interface de persistência de snapshots.

Cada componente com estado grava um snapshot JSON sob uma chave própria
(ex: "rate-limit-stats"). O namespace (sessão da conta) fica a cargo da
implementação do store.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from entrega.core.exceptions import PersistenciaError

logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    """Store chave -> snapshot (dict serializável em JSON)."""

    @abstractmethod
    def carregar(self, chave: str) -> Optional[dict]:
        """
        Lê snapshot.

        Returns:
            Dict do snapshot ou None se não existir

        Raises:
            PersistenciaError: Se o snapshot existir mas não puder ser lido
        """

    @abstractmethod
    def salvar(self, chave: str, dados: dict) -> None:
        """
        Grava snapshot, substituindo o anterior.

        Raises:
            PersistenciaError: Se a gravação falhar
        """

    @abstractmethod
    def remover(self, chave: str) -> None:
        """Remove snapshot (no-op se não existir)."""


def carregar_seguro(store: Optional[SnapshotStore], chave: str) -> Optional[dict]:
    """
    Lê snapshot sem propagar erro.

    Snapshot corrompido ou store fora do ar = começar do zero.
    """
    if store is None:
        return None
    try:
        return store.carregar(chave)
    except PersistenciaError as e:
        logger.warning(f"[Persistencia] Ignorando snapshot '{chave}': {e}")
        return None


def salvar_seguro(
    store: Optional[SnapshotStore],
    chave: str,
    dados: dict,
    agora: float,
) -> bool:
    """
    Grava snapshot com `saved_at`, sem propagar erro.

    Falha de persistência nunca derruba o motor: ele segue operando só em
    memória até a próxima gravação bem-sucedida.

    Returns:
        True se gravou
    """
    if store is None:
        return False
    try:
        store.salvar(chave, {**dados, "saved_at": agora})
        return True
    except PersistenciaError as e:
        logger.warning(f"[Persistencia] Falha ao salvar '{chave}', seguindo em memória: {e}")
        return False
