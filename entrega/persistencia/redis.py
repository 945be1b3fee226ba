"""
Store de snapshots no Redis.

Chave: entrega:<namespace>:<chave>, valor JSON.
"""
import json
import logging
from typing import Optional

import redis

from entrega.core.exceptions import PersistenciaError
from entrega.persistencia.base import SnapshotStore

logger = logging.getLogger(__name__)

PREFIXO = "entrega"


class RedisSnapshotStore(SnapshotStore):
    """Snapshots no Redis, um namespace por conta."""

    def __init__(self, cliente: redis.Redis, namespace: str):
        self.cliente = cliente
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str) -> "RedisSnapshotStore":
        cliente = redis.Redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(cliente, namespace)

    def _chave(self, chave: str) -> str:
        return f"{PREFIXO}:{self.namespace}:{chave}"

    def carregar(self, chave: str) -> Optional[dict]:
        try:
            valor = self.cliente.get(self._chave(chave))
        except redis.RedisError as e:
            raise PersistenciaError("Redis indisponível", chave=chave, original_error=e) from e

        if valor is None:
            return None

        try:
            return json.loads(valor)
        except (TypeError, json.JSONDecodeError) as e:
            raise PersistenciaError("Snapshot inválido no Redis", chave=chave, original_error=e) from e

    def salvar(self, chave: str, dados: dict) -> None:
        try:
            self.cliente.set(self._chave(chave), json.dumps(dados, ensure_ascii=False))
        except (redis.RedisError, TypeError, ValueError) as e:
            raise PersistenciaError("Erro ao gravar no Redis", chave=chave, original_error=e) from e

    def remover(self, chave: str) -> None:
        try:
            self.cliente.delete(self._chave(chave))
        except redis.RedisError as e:
            raise PersistenciaError("Erro ao remover do Redis", chave=chave, original_error=e) from e

    def ping(self) -> bool:
        """Verifica se Redis está acessível."""
        try:
            self.cliente.ping()
            return True
        except redis.RedisError as e:
            logger.error(f"Redis não acessível: {e}")
            return False
