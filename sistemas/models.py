"""
Módulo de definição das models da automação de sistemas IPTV.
Inclui os sistemas espelhados do painel remoto, a configuração singleton da
automação e o ledger append-only das execuções.
"""

from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


def validar_antecedencia_renovacao(valor):
    """Rejeita antecedências fora do intervalo 1..RENOVACAO_ANTECEDENCIA_MAXIMA (minutos)."""
    if valor is None:
        return
    maximo = getattr(settings, 'RENOVACAO_ANTECEDENCIA_MAXIMA', 10080)
    if valor < 1 or valor > maximo:
        raise ValidationError(
            f'Antecedência de renovação deve estar entre 1 e {maximo} minutos (recebido: {valor}).'
        )


class Sistema(models.Model):
    """
    Sistema (conta) hospedado no painel IPTV remoto e espelhado localmente.

    O painel é a fonte da verdade para existência e campos espelhados
    (credenciais, capacidade e expiração). Os campos de agendamento
    (renovação automática, antecedência, contadores) são locais.
    """

    CAMPOS_ESPELHADOS = ('system_id', 'password', 'max_pontos_ativos', 'expiracao')

    system_id = models.CharField(
        max_length=64,
        blank=True,
        verbose_name='ID no Painel',
        help_text='Identificador atribuído pelo painel remoto (usado nas chamadas de renovação)'
    )
    username = models.CharField(
        max_length=150,
        unique=True,
        verbose_name='Usuário',
        help_text='Usuário do sistema no painel (chave de identidade na sincronização)'
    )
    password = models.CharField(
        max_length=255,
        verbose_name='Senha'
    )
    max_pontos_ativos = models.PositiveIntegerField(
        default=100,
        verbose_name='Máximo de Pontos Ativos'
    )
    expiracao = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Expiração',
        help_text='Data/hora de validade do sistema no painel'
    )

    # Agendamento (local)
    renovacao_automatica = models.BooleanField(
        default=False,
        verbose_name='Renovação Automática'
    )
    antecedencia_renovacao = models.PositiveIntegerField(
        null=True,
        blank=True,
        validators=[validar_antecedencia_renovacao],
        verbose_name='Antecedência da Renovação (min)',
        help_text='Minutos antes da expiração para renovar. Vazio usa o padrão da configuração.'
    )
    contador_renovacoes = models.PositiveIntegerField(
        default=0,
        verbose_name='Renovações'
    )
    ultima_renovacao_em = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Última Renovação'
    )
    renovacao_bloqueada = models.BooleanField(
        default=False,
        verbose_name='Renovação Bloqueada',
        help_text='Definido após erro permanente do painel. Exige intervenção do operador.'
    )
    motivo_bloqueio = models.TextField(
        blank=True,
        verbose_name='Motivo do Bloqueio'
    )
    renovacao_em_andamento = models.BooleanField(
        default=False,
        verbose_name='Renovação em Andamento',
        help_text='Reserva da renovação atual; impede que outro processo renove a mesma expiração'
    )
    renovacao_iniciada_em = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Renovação Iniciada Em'
    )
    nota = models.TextField(
        blank=True,
        verbose_name='Nota'
    )

    criado_em = models.DateTimeField(
        auto_now_add=True,
        verbose_name='Criado Em'
    )
    atualizado_em = models.DateTimeField(
        auto_now=True,
        verbose_name='Atualizado Em'
    )

    class Meta:
        verbose_name = 'Sistema'
        verbose_name_plural = 'Sistemas'
        ordering = ['username']
        indexes = [
            models.Index(fields=['renovacao_automatica', 'expiracao'], name='sistema_renov_exp_idx'),
        ]

    def __str__(self):
        return f"{self.username} ({self.system_id or 'sem id'})"

    def antecedencia_efetiva(self, config: 'ConfiguracaoAutomacao') -> int:
        """Antecedência própria do sistema ou, se vazia, a padrão da configuração."""
        if self.antecedencia_renovacao is not None:
            return self.antecedencia_renovacao
        return config.antecedencia_renovacao

    def inicio_janela_renovacao(self, config: 'ConfiguracaoAutomacao') -> Optional[datetime]:
        """Instante a partir do qual o sistema entra na janela de renovação."""
        if self.expiracao is None:
            return None
        return self.expiracao - timedelta(minutes=self.antecedencia_efetiva(config))

    def esta_expirado(self, agora: datetime) -> bool:
        return self.expiracao is not None and self.expiracao <= agora


class ConfiguracaoAutomacao(models.Model):
    """
    Configuração global da automação de renovação.
    Singleton - apenas 1 registro deve existir. Lida a cada ciclo do scheduler.
    """

    ativo = models.BooleanField(
        default=False,
        verbose_name='Automação Ativa',
        help_text='Chave geral: desativada, nenhuma renovação é disparada'
    )
    antecedencia_renovacao = models.PositiveIntegerField(
        default=60,
        validators=[validar_antecedencia_renovacao],
        verbose_name='Antecedência Padrão (min)',
        help_text='Minutos antes da expiração para renovar os sistemas sem antecedência própria'
    )
    renovacao_automatica_padrao = models.BooleanField(
        default=False,
        verbose_name='Renovação Automática Padrão',
        help_text='Valor inicial de "renovação automática" para sistemas criados pela sincronização'
    )
    ultima_execucao_em = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Última Execução'
    )
    ciclo_em_execucao = models.BooleanField(
        default=False,
        verbose_name='Ciclo em Execução',
        help_text='Controle para evitar ciclos de renovação simultâneos entre processos'
    )
    ciclo_iniciado_em = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Ciclo Iniciado Em'
    )
    versao = models.PositiveIntegerField(
        default=1,
        verbose_name='Versão',
        help_text='Incrementada a cada atualização da configuração'
    )
    atualizado_em = models.DateTimeField(
        auto_now=True,
        verbose_name='Atualizado Em'
    )

    class Meta:
        verbose_name = 'Configuração de Automação'
        verbose_name_plural = 'Configurações de Automação'

    def save(self, *args, **kwargs):
        # Garante apenas 1 registro (Singleton)
        self.pk = 1
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # Impede exclusão do registro singleton
        pass

    @classmethod
    def get_config(cls):
        """Retorna a configuração, criando se não existir."""
        obj, _ = cls.objects.get_or_create(pk=1)
        return obj

    def __str__(self):
        status = "Ativa" if self.ativo else "Inativa"
        return f"Automação {status} (antecedência {self.antecedencia_renovacao} min, v{self.versao})"


class LogTarefaAutomacao(models.Model):
    """
    Ledger append-only das execuções de automação.

    Cada tentativa de renovação gera exatamente um registro 'started' e um
    registro terminal ('success', 'failure' ou 'skipped') com o mesmo
    correlacao_id. Registros nunca são alterados nem removidos pela aplicação.
    """

    TIPO_RENOVACAO = 'renovacao'
    TIPO_RENOVACAO_EXPIRADA = 'renovacao_expirada'
    TIPO_CICLO_RENOVACAO = 'ciclo_renovacao'
    TIPO_SINCRONIZACAO = 'sincronizacao'

    TIPO_CHOICES = [
        (TIPO_RENOVACAO, 'Renovação'),
        (TIPO_RENOVACAO_EXPIRADA, 'Sistema Expirado sem Renovação'),
        (TIPO_CICLO_RENOVACAO, 'Ciclo de Renovação'),
        (TIPO_SINCRONIZACAO, 'Sincronização'),
    ]

    STATUS_STARTED = 'started'
    STATUS_SUCCESS = 'success'
    STATUS_FAILURE = 'failure'
    STATUS_SKIPPED = 'skipped'

    STATUS_CHOICES = [
        (STATUS_STARTED, 'Iniciado'),
        (STATUS_SUCCESS, 'Sucesso'),
        (STATUS_FAILURE, 'Falha'),
        (STATUS_SKIPPED, 'Ignorado'),
    ]

    STATUS_TERMINAIS = (STATUS_SUCCESS, STATUS_FAILURE, STATUS_SKIPPED)

    tipo_tarefa = models.CharField(
        max_length=50,
        choices=TIPO_CHOICES,
        verbose_name='Tipo de Tarefa'
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        verbose_name='Status'
    )
    mensagem = models.TextField(
        blank=True,
        verbose_name='Mensagem'
    )
    erro = models.TextField(
        blank=True,
        verbose_name='Erro'
    )
    sistema = models.ForeignKey(
        Sistema,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='logs_automacao',
        verbose_name='Sistema'
    )
    sistema_username = models.CharField(
        max_length=150,
        blank=True,
        verbose_name='Usuário do Sistema',
        help_text='Mantido mesmo após a remoção do sistema'
    )
    expiracao_referencia = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Expiração de Referência',
        help_text='Expiração do sistema no momento do registro'
    )
    correlacao_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        verbose_name='Correlação'
    )
    criado_em = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        verbose_name='Criado Em'
    )

    class Meta:
        verbose_name = 'Log de Tarefa de Automação'
        verbose_name_plural = 'Logs de Tarefas de Automação'
        ordering = ['-criado_em', '-id']
        indexes = [
            models.Index(fields=['sistema', 'expiracao_referencia', 'status'], name='log_sistema_exp_status_idx'),
            models.Index(fields=['tipo_tarefa', 'status'], name='log_tipo_status_idx'),
        ]

    def __str__(self):
        alvo = self.sistema_username or 'geral'
        return f"{self.get_tipo_tarefa_display()} - {alvo} - {self.status} em {self.criado_em:%d/%m/%Y %H:%M}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError('Registros do ledger de automação são imutáveis.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError('Registros do ledger de automação não podem ser removidos.')
