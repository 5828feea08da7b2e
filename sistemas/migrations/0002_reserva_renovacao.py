# Generated manually

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('sistemas', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='sistema',
            name='renovacao_em_andamento',
            field=models.BooleanField(default=False, help_text='Reserva da renovação atual; impede que outro processo renove a mesma expiração', verbose_name='Renovação em Andamento'),
        ),
        migrations.AddField(
            model_name='sistema',
            name='renovacao_iniciada_em',
            field=models.DateTimeField(blank=True, null=True, verbose_name='Renovação Iniciada Em'),
        ),
        migrations.AddField(
            model_name='configuracaoautomacao',
            name='ciclo_em_execucao',
            field=models.BooleanField(default=False, help_text='Controle para evitar ciclos de renovação simultâneos entre processos', verbose_name='Ciclo em Execução'),
        ),
        migrations.AddField(
            model_name='configuracaoautomacao',
            name='ciclo_iniciado_em',
            field=models.DateTimeField(blank=True, null=True, verbose_name='Ciclo Iniciado Em'),
        ),
    ]
