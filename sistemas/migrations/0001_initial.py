# Generated manually

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import sistemas.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Sistema',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('system_id', models.CharField(blank=True, help_text='Identificador atribuído pelo painel remoto (usado nas chamadas de renovação)', max_length=64, verbose_name='ID no Painel')),
                ('username', models.CharField(help_text='Usuário do sistema no painel (chave de identidade na sincronização)', max_length=150, unique=True, verbose_name='Usuário')),
                ('password', models.CharField(max_length=255, verbose_name='Senha')),
                ('max_pontos_ativos', models.PositiveIntegerField(default=100, verbose_name='Máximo de Pontos Ativos')),
                ('expiracao', models.DateTimeField(blank=True, help_text='Data/hora de validade do sistema no painel', null=True, verbose_name='Expiração')),
                ('renovacao_automatica', models.BooleanField(default=False, verbose_name='Renovação Automática')),
                ('antecedencia_renovacao', models.PositiveIntegerField(blank=True, help_text='Minutos antes da expiração para renovar. Vazio usa o padrão da configuração.', null=True, validators=[sistemas.models.validar_antecedencia_renovacao], verbose_name='Antecedência da Renovação (min)')),
                ('contador_renovacoes', models.PositiveIntegerField(default=0, verbose_name='Renovações')),
                ('ultima_renovacao_em', models.DateTimeField(blank=True, null=True, verbose_name='Última Renovação')),
                ('renovacao_bloqueada', models.BooleanField(default=False, help_text='Definido após erro permanente do painel. Exige intervenção do operador.', verbose_name='Renovação Bloqueada')),
                ('motivo_bloqueio', models.TextField(blank=True, verbose_name='Motivo do Bloqueio')),
                ('nota', models.TextField(blank=True, verbose_name='Nota')),
                ('criado_em', models.DateTimeField(auto_now_add=True, verbose_name='Criado Em')),
                ('atualizado_em', models.DateTimeField(auto_now=True, verbose_name='Atualizado Em')),
            ],
            options={
                'verbose_name': 'Sistema',
                'verbose_name_plural': 'Sistemas',
                'ordering': ['username'],
                'indexes': [models.Index(fields=['renovacao_automatica', 'expiracao'], name='sistema_renov_exp_idx')],
            },
        ),
        migrations.CreateModel(
            name='ConfiguracaoAutomacao',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('ativo', models.BooleanField(default=False, help_text='Chave geral: desativada, nenhuma renovação é disparada', verbose_name='Automação Ativa')),
                ('antecedencia_renovacao', models.PositiveIntegerField(default=60, help_text='Minutos antes da expiração para renovar os sistemas sem antecedência própria', validators=[sistemas.models.validar_antecedencia_renovacao], verbose_name='Antecedência Padrão (min)')),
                ('renovacao_automatica_padrao', models.BooleanField(default=False, help_text='Valor inicial de "renovação automática" para sistemas criados pela sincronização', verbose_name='Renovação Automática Padrão')),
                ('ultima_execucao_em', models.DateTimeField(blank=True, null=True, verbose_name='Última Execução')),
                ('versao', models.PositiveIntegerField(default=1, help_text='Incrementada a cada atualização da configuração', verbose_name='Versão')),
                ('atualizado_em', models.DateTimeField(auto_now=True, verbose_name='Atualizado Em')),
            ],
            options={
                'verbose_name': 'Configuração de Automação',
                'verbose_name_plural': 'Configurações de Automação',
            },
        ),
        migrations.CreateModel(
            name='LogTarefaAutomacao',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tipo_tarefa', models.CharField(choices=[('renovacao', 'Renovação'), ('renovacao_expirada', 'Sistema Expirado sem Renovação'), ('ciclo_renovacao', 'Ciclo de Renovação'), ('sincronizacao', 'Sincronização')], max_length=50, verbose_name='Tipo de Tarefa')),
                ('status', models.CharField(choices=[('started', 'Iniciado'), ('success', 'Sucesso'), ('failure', 'Falha'), ('skipped', 'Ignorado')], max_length=20, verbose_name='Status')),
                ('mensagem', models.TextField(blank=True, verbose_name='Mensagem')),
                ('erro', models.TextField(blank=True, verbose_name='Erro')),
                ('sistema_username', models.CharField(blank=True, help_text='Mantido mesmo após a remoção do sistema', max_length=150, verbose_name='Usuário do Sistema')),
                ('expiracao_referencia', models.DateTimeField(blank=True, help_text='Expiração do sistema no momento do registro', null=True, verbose_name='Expiração de Referência')),
                ('correlacao_id', models.UUIDField(blank=True, db_index=True, null=True, verbose_name='Correlação')),
                ('criado_em', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='Criado Em')),
                ('sistema', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='logs_automacao', to='sistemas.sistema', verbose_name='Sistema')),
            ],
            options={
                'verbose_name': 'Log de Tarefa de Automação',
                'verbose_name_plural': 'Logs de Tarefas de Automação',
                'ordering': ['-criado_em', '-id'],
                'indexes': [
                    models.Index(fields=['sistema', 'expiracao_referencia', 'status'], name='log_sistema_exp_status_idx'),
                    models.Index(fields=['tipo_tarefa', 'status'], name='log_tipo_status_idx'),
                ],
            },
        ),
    ]
