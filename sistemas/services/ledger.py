"""
Ledger append-only das execuções de automação.

Usado para auditoria e como guarda de idempotência da renovação: a
existência de um registro 'success' para (sistema, expiração) impede uma
segunda renovação da mesma expiração.
"""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Union

from django.db import DatabaseError

from sistemas.models import LogTarefaAutomacao, Sistema
from sistemas.services.armazenamento import LocalStoreError

LIMITE_PADRAO = 50
LIMITE_MAXIMO = 500


class LedgerAutomacao:

    def registrar(
        self,
        tipo_tarefa: str,
        status: str,
        mensagem: str = '',
        erro: str = '',
        sistema: Optional[Sistema] = None,
        expiracao_referencia: Optional[datetime] = None,
        correlacao_id: Optional[uuid.UUID] = None,
    ) -> LogTarefaAutomacao:
        """
        Anexa um registro ao ledger.

        Se expiracao_referencia não for informada, usa a expiração atual do sistema.
        """
        if expiracao_referencia is None and sistema is not None:
            expiracao_referencia = sistema.expiracao

        try:
            return LogTarefaAutomacao.objects.create(
                tipo_tarefa=tipo_tarefa,
                status=status,
                mensagem=mensagem,
                erro=erro or '',
                sistema=sistema,
                sistema_username=sistema.username if sistema is not None else '',
                expiracao_referencia=expiracao_referencia,
                correlacao_id=correlacao_id,
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='registrar_ledger') from e

    def buscar_ultimo_para_expiracao(
        self,
        sistema_id: int,
        expiracao: Optional[datetime],
        status: Union[str, Iterable[str]],
        tipo_tarefa: Optional[str] = None,
    ) -> Optional[LogTarefaAutomacao]:
        """Registro mais recente do sistema para a expiração e status(es) informados."""
        statuses = [status] if isinstance(status, str) else list(status)

        filtros = {
            'sistema_id': sistema_id,
            'status__in': statuses,
        }
        if expiracao is None:
            filtros['expiracao_referencia__isnull'] = True
        else:
            filtros['expiracao_referencia'] = expiracao
        if tipo_tarefa:
            filtros['tipo_tarefa'] = tipo_tarefa

        try:
            return LogTarefaAutomacao.objects.filter(**filtros).order_by('-criado_em', '-id').first()
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='buscar_ledger') from e

    def recentes(self, limite: Optional[int] = LIMITE_PADRAO) -> List[LogTarefaAutomacao]:
        """Registros mais recentes primeiro. O limite é restrito a 1..500."""
        if limite is None:
            limite = LIMITE_PADRAO
        limite = max(1, min(int(limite), LIMITE_MAXIMO))

        try:
            return list(
                LogTarefaAutomacao.objects.select_related('sistema').order_by('-criado_em', '-id')[:limite]
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='recentes_ledger') from e
