"""Painel em memória e helpers usados pelos testes."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone as dt_timezone

from sistemas.models import Sistema
from sistemas.services.painel_api import BasePainelAPI, ContaRemota, ResultadoRenovacaoRemota

AGORA = datetime(2026, 1, 15, 12, 0, tzinfo=dt_timezone.utc)


def conta(username, system_id=None, password='senha', max_pontos_ativos=100, expiracao=None):
    return ContaRemota(
        system_id=system_id or f'id-{username}',
        username=username,
        password=password,
        max_pontos_ativos=max_pontos_ativos,
        expiracao=expiracao,
    )


def criar_sistema(username, expiracao=None, **campos):
    campos.setdefault('system_id', f'id-{username}')
    campos.setdefault('password', 'senha')
    return Sistema.objects.create(username=username, expiracao=expiracao, **campos)


class PainelFake(BasePainelAPI):
    """
    Painel remoto em memória.

    Renovações somam dias_renovacao à expiração da conta remota, a menos que
    expiracoes_renovacao defina o retorno para o system_id.
    """

    def __init__(self, contas=None, dias_renovacao=30):
        self.contas = {c.username: c for c in (contas or [])}
        self.dias_renovacao = dias_renovacao
        self.erro_listagem = None
        self.erros_renovacao = {}
        self.expiracoes_renovacao = {}
        self.renovacoes = []
        self.escritas = []

    def _por_system_id(self, system_id):
        for c in self.contas.values():
            if c.system_id == system_id:
                return c
        return None

    def list_accounts(self):
        if self.erro_listagem is not None:
            raise self.erro_listagem
        return [replace(c) for c in self.contas.values()]

    def renew_account(self, system_id):
        self.renovacoes.append(system_id)
        if system_id in self.erros_renovacao:
            raise self.erros_renovacao[system_id]

        remota = self._por_system_id(system_id)
        if system_id in self.expiracoes_renovacao:
            nova = self.expiracoes_renovacao[system_id]
        else:
            nova = (remota.expiracao if remota and remota.expiracao else AGORA) + timedelta(days=self.dias_renovacao)
        if remota is not None:
            remota.expiracao = nova
        return ResultadoRenovacaoRemota(nova_expiracao=nova)

    def create_account(self, username, password, max_pontos_ativos=None, expiracao=None):
        self.escritas.append(('create', username))
        nova = conta(username, password=password, max_pontos_ativos=max_pontos_ativos or 100, expiracao=expiracao)
        self.contas[username] = nova
        return nova

    def update_account(self, system_id, **campos):
        self.escritas.append(('update', system_id))
        remota = self._por_system_id(system_id)
        for chave, valor in campos.items():
            setattr(remota, chave, valor)
        return remota

    def delete_account(self, system_id):
        self.escritas.append(('delete', system_id))
        remota = self._por_system_id(system_id)
        del self.contas[remota.username]
        return True
