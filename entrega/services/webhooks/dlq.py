"""
Dead Letter Queue para notificações de webhook.

Guarda notificações que esgotaram as tentativas inline, para
reprocessamento em background. Persistida como snapshot próprio.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from entrega.core.relogio import Relogio, relogio_sistema
from entrega.persistencia.base import SnapshotStore, carregar_seguro, salvar_seguro

logger = logging.getLogger(__name__)

CHAVE_SNAPSHOT = "webhook-failed-queue"


@dataclass
class JobNotificacao:
    payload: dict
    adicionado_em: float
    tentativas: int


class FilaNotificacoesFalhas:
    """Fila persistida de notificações aguardando reprocessamento."""

    def __init__(self, store: Optional[SnapshotStore] = None, relogio: Relogio = relogio_sistema):
        self._store = store
        self._relogio = relogio
        self.jobs: list[JobNotificacao] = []
        self._carregar()

    def __len__(self) -> int:
        return len(self.jobs)

    def adicionar(self, payload: dict, tentativas: int) -> JobNotificacao:
        """Adiciona job e persiste."""
        job = JobNotificacao(payload=payload, adicionado_em=self._relogio(), tentativas=tentativas)
        self.jobs.append(job)
        self.salvar()

        logger.warning(
            f"[DLQ] Notificação salva para reprocessamento "
            f"(tentativas={tentativas}, fila={len(self.jobs)})"
        )
        return job

    def pendentes(self) -> list[JobNotificacao]:
        """Cópia dos jobs atuais (para uma passada de reprocessamento)."""
        return list(self.jobs)

    def remover(self, job: JobNotificacao):
        """Tira job entregue ou descartado (sem persistir; a passada grava ao final)."""
        self.jobs = [j for j in self.jobs if j is not job]

    def salvar(self):
        salvar_seguro(self._store, CHAVE_SNAPSHOT, {
            "jobs": [asdict(j) for j in self.jobs],
        }, self._relogio())

    def _carregar(self):
        dados = carregar_seguro(self._store, CHAVE_SNAPSHOT)
        if not dados:
            return

        for item in dados.get("jobs") or []:
            try:
                self.jobs.append(JobNotificacao(**item))
            except TypeError:
                logger.warning("[DLQ] Job inválido ignorado no snapshot")

        if self.jobs:
            logger.info(f"[DLQ] {len(self.jobs)} notificação(ões) restaurada(s)")
