"""
Persistência de snapshots por componente.

Implementações:
- ArquivoSnapshotStore: JSON no diretório da sessão (padrão)
- RedisSnapshotStore: Redis com namespace por conta
- MemoriaSnapshotStore: só em memória
"""

from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro
from entrega.persistencia.arquivo import ArquivoSnapshotStore
from entrega.persistencia.memoria import MemoriaSnapshotStore
from entrega.persistencia.redis import RedisSnapshotStore

__all__ = [
    "SnapshotStore",
    "carregar_seguro",
    "salvar_seguro",
    "ArquivoSnapshotStore",
    "MemoriaSnapshotStore",
    "RedisSnapshotStore",
]
