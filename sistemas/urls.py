from django.urls import path

from .views import (
    sincronizar_sistemas,
    verificar_divergencias,
    configuracao_automacao,
    logs_automacao,
    renovacoes_agendadas,
    status_renovacoes,
    forcar_renovacao,
    desbloquear_renovacao,
)

urlpatterns = [
    # Sistemas
    path('api/sistemas/sincronizar/', sincronizar_sistemas, name='sincronizar-sistemas'),
    path('api/sistemas/divergencias/', verificar_divergencias, name='verificar-divergencias'),
    path('api/sistemas/<int:sistema_id>/renovar/', forcar_renovacao, name='forcar-renovacao'),
    path('api/sistemas/<int:sistema_id>/desbloquear/', desbloquear_renovacao, name='desbloquear-renovacao'),

    # Automação
    path('api/automacao/configuracao/', configuracao_automacao, name='configuracao-automacao'),
    path('api/automacao/logs/', logs_automacao, name='logs-automacao'),
    path('api/automacao/renovacoes/', renovacoes_agendadas, name='renovacoes-agendadas'),
    path('api/automacao/renovacoes/status/', status_renovacoes, name='status-renovacoes'),
]
