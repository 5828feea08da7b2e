from django.contrib import admin
from django.db.models import F

from .models import ConfiguracaoAutomacao, LogTarefaAutomacao, Sistema
from .services.armazenamento import ArmazenamentoSistemas


class SistemaAdmin(admin.ModelAdmin):
    list_display = (
        "username", "system_id", "expiracao", "renovacao_automatica", "antecedencia_renovacao",
        "contador_renovacoes", "ultima_renovacao_em", "renovacao_bloqueada"
    )
    list_filter = ("renovacao_automatica", "renovacao_bloqueada")
    search_fields = ("username", "system_id", "nota")
    readonly_fields = (
        "contador_renovacoes", "ultima_renovacao_em", "motivo_bloqueio", "renovacao_em_andamento",
        "renovacao_iniciada_em", "criado_em", "atualizado_em"
    )
    ordering = ("expiracao",)
    list_per_page = 50
    actions = ["desbloquear_renovacao"]

    fieldsets = (
        ("Painel", {
            "fields": ("username", "system_id", "password", "max_pontos_ativos", "expiracao")
        }),
        ("Renovação Automática", {
            "fields": (
                "renovacao_automatica", "antecedencia_renovacao", "contador_renovacoes",
                "ultima_renovacao_em", "renovacao_bloqueada", "motivo_bloqueio", "renovacao_em_andamento",
                "renovacao_iniciada_em"
            )
        }),
        ("Outros", {
            "fields": ("nota", "criado_em", "atualizado_em")
        }),
    )

    def save_model(self, request, obj, form, change):
        if change:
            # Não regrava contador e reserva, atualizados pela renovação em paralelo
            obj.save(update_fields=[*form.changed_data, "atualizado_em"])
            return
        super().save_model(request, obj, form, change)

    @admin.action(description="Desbloquear renovação automática")
    def desbloquear_renovacao(self, request, queryset):
        total = ArmazenamentoSistemas().desbloquear_renovacao(queryset.values_list("pk", flat=True))
        self.message_user(request, f"{total} sistema(s) desbloqueado(s).")


class ConfiguracaoAutomacaoAdmin(admin.ModelAdmin):
    """Admin para a configuração da automação (singleton)."""
    list_display = ("ativo", "antecedencia_renovacao", "renovacao_automatica_padrao", "ultima_execucao_em", "versao")
    readonly_fields = ("ultima_execucao_em", "ciclo_em_execucao", "ciclo_iniciado_em", "versao", "atualizado_em")

    def has_add_permission(self, request):
        """Permite apenas 1 registro (singleton)."""
        return not ConfiguracaoAutomacao.objects.exists()

    def has_delete_permission(self, request, obj=None):
        """Não permite excluir o registro singleton."""
        return False

    def save_model(self, request, obj, form, change):
        if not change:
            super().save_model(request, obj, form, change)
            return
        # Grava só o que veio do formulário: a marca do ciclo é do scheduler
        obj.versao = F("versao") + 1
        obj.save(update_fields=[*form.changed_data, "versao", "atualizado_em"])
        obj.refresh_from_db()


class LogTarefaAutomacaoAdmin(admin.ModelAdmin):
    list_display = ("criado_em", "tipo_tarefa", "status", "sistema_username", "expiracao_referencia", "mensagem")
    list_filter = ("tipo_tarefa", "status")
    search_fields = ("sistema_username", "mensagem", "erro", "correlacao_id")
    readonly_fields = (
        "tipo_tarefa", "status", "mensagem", "erro", "sistema", "sistema_username",
        "expiracao_referencia", "correlacao_id", "criado_em"
    )
    date_hierarchy = "criado_em"
    ordering = ("-criado_em",)
    list_per_page = 50

    def has_add_permission(self, request):
        """Ledger append-only: registros só pela automação."""
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


admin.site.register(Sistema, SistemaAdmin)
admin.site.register(ConfiguracaoAutomacao, ConfiguracaoAutomacaoAdmin)
admin.site.register(LogTarefaAutomacao, LogTarefaAutomacaoAdmin)
