"""
Sincronização (reconciliação) dos sistemas locais com o painel remoto.

O painel é a fonte da verdade para a existência dos sistemas e para os
campos espelhados. Os campos de agendamento são locais e nunca são
alterados aqui. O painel nunca é modificado pela sincronização.
"""

import uuid
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from sistemas.models import LogTarefaAutomacao, Sistema
from sistemas.services.armazenamento import ArmazenamentoSistemas, LocalStoreError
from sistemas.services.ledger import LedgerAutomacao
from sistemas.services.logging_config import LogTemplates, get_sincronizacao_logger
from sistemas.services.painel_api import APIError, BasePainelAPI, ContaRemota


@dataclass
class ResultadoSincronizacao:
    criados: int = 0
    atualizados: int = 0
    removidos: int = 0
    erros: List[str] = field(default_factory=list)
    abortado: bool = False

    @property
    def sucesso(self) -> bool:
        return not self.abortado and not self.erros

    def to_dict(self) -> Dict:
        dados = asdict(self)
        dados['sucesso'] = self.sucesso
        return dados


def campos_divergentes(local: Sistema, remota: ContaRemota) -> Dict[str, object]:
    """Campos espelhados cujo valor local difere do painel, com o valor remoto."""
    return {
        campo: valor
        for campo, valor in remota.campos_espelhados().items()
        if getattr(local, campo) != valor
    }


def indexar_por_username(contas: List[ContaRemota]) -> Tuple[Dict[str, ContaRemota], List[str]]:
    """Indexa as contas remotas por username. Usernames repetidos mantêm a primeira ocorrência."""
    indice: Dict[str, ContaRemota] = {}
    repetidos: List[str] = []
    for conta in contas:
        if conta.username in indice:
            repetidos.append(conta.username)
            continue
        indice[conta.username] = conta
    return indice, repetidos


class SincronizadorSistemas:
    """
    Reconcilia o banco local com o painel.

    Uso:
        resultado = SincronizadorSistemas(criar_painel_api()).reconciliar()
    """

    def __init__(self, painel: BasePainelAPI, armazenamento: Optional[ArmazenamentoSistemas] = None,
                 ledger: Optional[LedgerAutomacao] = None, logger=None):
        self.painel = painel
        self.armazenamento = armazenamento or ArmazenamentoSistemas()
        self.ledger = ledger or LedgerAutomacao()
        self.log = logger or get_sincronizacao_logger()

    def reconciliar(self) -> ResultadoSincronizacao:
        resultado = ResultadoSincronizacao()
        correlacao_id = uuid.uuid4()

        self._registrar(LogTarefaAutomacao.STATUS_STARTED, 'Sincronização iniciada', correlacao_id=correlacao_id)

        # Sem listagem remota confiável nada é alterado
        try:
            contas_remotas = self.painel.list_accounts()
        except APIError as e:
            return self._abortar(resultado, f'Falha ao listar sistemas do painel: {e}', correlacao_id)

        try:
            sistemas_locais = self.armazenamento.listar_sistemas()
            config = self.armazenamento.obter_configuracao()
        except LocalStoreError as e:
            return self._abortar(resultado, f'Falha ao listar sistemas locais: {e}', correlacao_id)

        remotas, repetidos = indexar_por_username(contas_remotas)
        for username in repetidos:
            resultado.erros.append(f'{username}: username repetido no painel (mantida a primeira ocorrência)')

        locais = {sistema.username: sistema for sistema in sistemas_locais}

        for username, conta in remotas.items():
            local = locais.get(username)
            try:
                if local is None:
                    self.armazenamento.upsert_sistema(conta, config)
                    resultado.criados += 1
                    self.log.info(f'Sistema criado localmente: {username}')
                    continue

                diferencas = campos_divergentes(local, conta)
                if diferencas:
                    self.armazenamento.atualizar_campos_espelhados(local.pk, diferencas)
                    resultado.atualizados += 1
                    self.log.info(f'Sistema atualizado: {username} campos={sorted(diferencas)}')
            except LocalStoreError as e:
                resultado.erros.append(f'{username}: {e}')
                self.log.error(f'Erro ao sincronizar {username}: {e}')

        for username, local in locais.items():
            if username in remotas:
                continue
            try:
                if self.armazenamento.remover_sistema(local.pk):
                    resultado.removidos += 1
                    self.log.info(f'Sistema removido (ausente no painel): {username}')
            except LocalStoreError as e:
                resultado.erros.append(f'{username}: {e}')
                self.log.error(f'Erro ao remover {username}: {e}')

        self.log.info(
            LogTemplates.SINCRONIZACAO_RESUMO,
            resultado.criados, resultado.atualizados, resultado.removidos, len(resultado.erros)
        )

        mensagem = (
            f'Criados: {resultado.criados}, atualizados: {resultado.atualizados}, '
            f'removidos: {resultado.removidos}'
        )
        if resultado.erros:
            self._registrar(LogTarefaAutomacao.STATUS_FAILURE, mensagem,
                            erro='\n'.join(resultado.erros), correlacao_id=correlacao_id)
        else:
            self._registrar(LogTarefaAutomacao.STATUS_SUCCESS, mensagem, correlacao_id=correlacao_id)

        return resultado

    def _abortar(self, resultado: ResultadoSincronizacao, erro: str, correlacao_id) -> ResultadoSincronizacao:
        resultado.abortado = True
        resultado.erros.append(erro)
        self.log.error(LogTemplates.SINCRONIZACAO_ABORTADA, erro)
        self._registrar(LogTarefaAutomacao.STATUS_FAILURE, 'Sincronização abortada sem alterações',
                        erro=erro, correlacao_id=correlacao_id)
        return resultado

    def _registrar(self, status: str, mensagem: str, erro: str = '', correlacao_id=None) -> None:
        # Falha no ledger não desfaz a sincronização já aplicada
        try:
            self.ledger.registrar(
                tipo_tarefa=LogTarefaAutomacao.TIPO_SINCRONIZACAO,
                status=status,
                mensagem=mensagem,
                erro=erro,
                correlacao_id=correlacao_id,
            )
        except LocalStoreError as e:
            self.log.error(f'Erro ao registrar sincronização no ledger: {e}')
