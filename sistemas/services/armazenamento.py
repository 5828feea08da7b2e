"""
Acesso ao banco local dos sistemas e da configuração de automação.

As escritas são separadas por grupo de campos: a sincronização só toca os
campos espelhados do painel e a renovação só toca os campos de agendamento.
Cada escrita é um UPDATE de uma única linha, então as duas podem rodar ao
mesmo tempo sem uma sobrescrever a outra.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import F, Q
from django.utils import timezone

from sistemas.models import ConfiguracaoAutomacao, Sistema, validar_antecedencia_renovacao
from sistemas.services.painel_api import ContaRemota


class LocalStoreError(Exception):
    """Falha de leitura ou escrita no banco local."""

    def __init__(self, message: str, operacao: Optional[str] = None):
        self.message = message
        self.operacao = operacao
        prefixo = f"Store Error on {operacao}" if operacao else "Store Error"
        super().__init__(f"{prefixo}: {message}")


class ArmazenamentoSistemas:
    """Store dos sistemas locais e da configuração singleton."""

    CAMPOS_CONFIGURACAO = ('ativo', 'antecedencia_renovacao', 'renovacao_automatica_padrao')

    # ==================== SISTEMAS ====================

    def listar_sistemas(self) -> List[Sistema]:
        try:
            return list(Sistema.objects.all().order_by('username'))
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='listar_sistemas') from e

    def listar_com_renovacao_automatica(self) -> List[Sistema]:
        try:
            return list(
                Sistema.objects.filter(renovacao_automatica=True, expiracao__isnull=False)
                .order_by('expiracao')
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='listar_com_renovacao_automatica') from e

    def obter_sistema(self, sistema_id: int) -> Optional[Sistema]:
        try:
            return Sistema.objects.filter(pk=sistema_id).first()
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='obter_sistema') from e

    def upsert_sistema(self, conta: ContaRemota,
                       config: Optional[ConfiguracaoAutomacao] = None) -> Tuple[Sistema, bool]:
        """
        Cria ou atualiza o sistema identificado por conta.username.

        Na criação, os campos locais vêm da configuração: renovação automática
        recebe o padrão configurado e a antecedência fica vazia (herda a global).
        Na atualização, apenas os campos espelhados são gravados.

        Returns:
            Tupla (sistema, criado)
        """
        try:
            existente = Sistema.objects.filter(username=conta.username).first()
            if existente is not None:
                self.atualizar_campos_espelhados(existente.pk, conta.campos_espelhados())
                existente.refresh_from_db()
                return existente, False

            if config is None:
                config = ConfiguracaoAutomacao.get_config()

            sistema = Sistema.objects.create(
                username=conta.username,
                renovacao_automatica=config.renovacao_automatica_padrao,
                antecedencia_renovacao=None,
                **conta.campos_espelhados()
            )
            return sistema, True
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='upsert_sistema') from e

    def remover_sistema(self, sistema_id: int) -> bool:
        try:
            removidos, _ = Sistema.objects.filter(pk=sistema_id).delete()
            return removidos > 0
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='remover_sistema') from e

    def atualizar_campos_espelhados(self, sistema_id: int, campos: Dict[str, Any]) -> bool:
        """Grava somente os campos espelhados informados. Campos de agendamento são ignorados."""
        valores = {chave: valor for chave, valor in campos.items() if chave in Sistema.CAMPOS_ESPELHADOS}
        if not valores:
            return False
        try:
            atualizados = Sistema.objects.filter(pk=sistema_id).update(
                atualizado_em=timezone.now(), **valores
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='atualizar_campos_espelhados') from e
        return atualizados > 0

    def registrar_renovacao(self, sistema_id: int, nova_expiracao: datetime, agora: datetime) -> bool:
        """
        Aplica uma renovação confirmada pelo painel.

        O UPDATE só acontece se a expiração não diminuir, mantendo o contador
        e a expiração monotônicos mesmo sob concorrência com a sincronização.
        """
        try:
            atualizados = (
                Sistema.objects
                .filter(pk=sistema_id)
                .exclude(expiracao__gt=nova_expiracao)
                .update(
                    expiracao=nova_expiracao,
                    contador_renovacoes=F('contador_renovacoes') + 1,
                    ultima_renovacao_em=agora,
                    atualizado_em=timezone.now(),
                )
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='registrar_renovacao') from e
        return atualizados > 0

    def reservar_renovacao(self, sistema_id: int, expiracao: Optional[datetime],
                           validade: timedelta) -> bool:
        """
        Reserva a renovação de um sistema para a expiração informada.

        UPDATE condicional de uma linha: só um processo consegue a reserva
        enquanto ela estiver ativa. Reservas mais antigas que a validade
        (processo interrompido no meio da renovação) podem ser retomadas.

        Returns:
            True se a reserva foi obtida
        """
        agora = timezone.now()
        try:
            reservados = (
                Sistema.objects
                .filter(pk=sistema_id, expiracao=expiracao)
                .filter(Q(renovacao_em_andamento=False) | Q(renovacao_iniciada_em__lt=agora - validade))
                .update(renovacao_em_andamento=True, renovacao_iniciada_em=agora)
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='reservar_renovacao') from e
        return reservados > 0

    def liberar_renovacao(self, sistema_id: int) -> None:
        try:
            Sistema.objects.filter(pk=sistema_id).update(renovacao_em_andamento=False, renovacao_iniciada_em=None)
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='liberar_renovacao') from e

    def bloquear_renovacao(self, sistema_id: int, motivo: str) -> bool:
        try:
            atualizados = Sistema.objects.filter(pk=sistema_id).update(
                renovacao_bloqueada=True,
                motivo_bloqueio=motivo,
                atualizado_em=timezone.now(),
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='bloquear_renovacao') from e
        return atualizados > 0

    def desbloquear_renovacao(self, sistema_ids: Iterable[int]) -> int:
        try:
            return Sistema.objects.filter(pk__in=list(sistema_ids)).update(
                renovacao_bloqueada=False,
                motivo_bloqueio='',
                atualizado_em=timezone.now(),
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='desbloquear_renovacao') from e

    # ==================== CONFIGURAÇÃO ====================

    def obter_configuracao(self) -> ConfiguracaoAutomacao:
        try:
            return ConfiguracaoAutomacao.get_config()
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='obter_configuracao') from e

    def atualizar_configuracao(self, **campos) -> ConfiguracaoAutomacao:
        """
        Valida e grava a configuração, incrementando a versão.
        Vale a partir do próximo ciclo do scheduler.

        Raises:
            ValidationError: campo desconhecido ou valor fora dos limites
        """
        desconhecidos = set(campos) - set(self.CAMPOS_CONFIGURACAO)
        if desconhecidos:
            raise ValidationError(f"Campos não permitidos: {', '.join(sorted(desconhecidos))}")

        for chave in ('ativo', 'renovacao_automatica_padrao'):
            if chave in campos and not isinstance(campos[chave], bool):
                raise ValidationError(f"'{chave}' deve ser booleano.")

        if 'antecedencia_renovacao' in campos:
            valor = campos['antecedencia_renovacao']
            if isinstance(valor, bool) or not isinstance(valor, int):
                raise ValidationError("'antecedencia_renovacao' deve ser um número inteiro de minutos.")
            validar_antecedencia_renovacao(valor)

        try:
            with transaction.atomic():
                ConfiguracaoAutomacao.get_config()
                config = ConfiguracaoAutomacao.objects.select_for_update().get(pk=1)
                for chave, valor in campos.items():
                    setattr(config, chave, valor)
                config.versao += 1
                # Campos de controle do ciclo não são regravados
                config.save(update_fields=[*campos, 'versao', 'atualizado_em'])
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='atualizar_configuracao') from e
        return config

    def reservar_ciclo(self, validade: timedelta) -> bool:
        """
        Marca o ciclo de renovação como em execução no banco.

        Vale entre processos (scheduler, web e management commands). Um ciclo
        interrompido sem liberar a marca é retomado após a validade.
        """
        agora = timezone.now()
        try:
            ConfiguracaoAutomacao.get_config()
            reservados = (
                ConfiguracaoAutomacao.objects
                .filter(pk=1)
                .filter(Q(ciclo_em_execucao=False) | Q(ciclo_iniciado_em__lt=agora - validade))
                .update(ciclo_em_execucao=True, ciclo_iniciado_em=agora)
            )
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='reservar_ciclo') from e
        return reservados > 0

    def liberar_ciclo(self) -> None:
        try:
            ConfiguracaoAutomacao.objects.filter(pk=1).update(ciclo_em_execucao=False, ciclo_iniciado_em=None)
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='liberar_ciclo') from e

    def registrar_execucao(self, agora: datetime) -> None:
        """Grava ultima_execucao_em sem tocar nos campos editados pelo operador."""
        try:
            ConfiguracaoAutomacao.get_config()
            ConfiguracaoAutomacao.objects.filter(pk=1).update(ultima_execucao_em=agora)
        except DatabaseError as e:
            raise LocalStoreError(str(e), operacao='registrar_execucao') from e
