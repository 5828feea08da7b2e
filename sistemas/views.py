"""
Endpoints JSON da automação de sistemas.

Todos exigem usuário autenticado. Erros inesperados retornam
{'success': False, 'error': ...} com status 500 e são logados.
"""

import json
import logging

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from sistemas.models import Sistema
from sistemas.services.armazenamento import ArmazenamentoSistemas
from sistemas.services.divergencias import DetectorDivergencias
from sistemas.services.ledger import LIMITE_MAXIMO, LIMITE_PADRAO, LedgerAutomacao
from sistemas.services.painel_api import criar_painel_api
from sistemas.services.renovacao_automatica import get_renovacao_service
from sistemas.services.sincronizacao import SincronizadorSistemas

logger = logging.getLogger(__name__)


def _serializar_configuracao(config):
    return {
        'ativo': config.ativo,
        'antecedencia_renovacao': config.antecedencia_renovacao,
        'renovacao_automatica_padrao': config.renovacao_automatica_padrao,
        'ultima_execucao_em': config.ultima_execucao_em.isoformat() if config.ultima_execucao_em else None,
        'versao': config.versao,
        'atualizado_em': config.atualizado_em.isoformat() if config.atualizado_em else None,
    }


def _serializar_log(log):
    return {
        'id': log.id,
        'tipo_tarefa': log.tipo_tarefa,
        'status': log.status,
        'mensagem': log.mensagem,
        'erro': log.erro,
        'sistema_id': log.sistema_id,
        'sistema_username': log.sistema_username,
        'expiracao_referencia': log.expiracao_referencia.isoformat() if log.expiracao_referencia else None,
        'correlacao_id': str(log.correlacao_id) if log.correlacao_id else None,
        'criado_em': log.criado_em.isoformat(),
    }


@require_POST
@login_required
def sincronizar_sistemas(request):
    """
    Reconcilia os sistemas locais com o painel.

    Response:
    - 200: sincronização executada (pode conter erros por sistema)
    - 502: listagem do painel falhou, nada foi alterado
    """
    try:
        resultado = SincronizadorSistemas(criar_painel_api()).reconciliar()
        status = 502 if resultado.abortado else 200
        return JsonResponse({'success': resultado.sucesso, **resultado.to_dict()}, status=status)
    except Exception as e:
        logger.exception(f'Erro ao sincronizar sistemas: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_GET
@login_required
def verificar_divergencias(request):
    """
    Compara banco local e painel sem alterar nada.

    Se 'api_conectada' for False o painel não respondeu e 'tem_divergencias'
    não deve ser lido como "sincronizado".
    """
    try:
        timeout = getattr(settings, 'PAINEL_API_TIMEOUT_DIVERGENCIAS', 5)
        relatorio = DetectorDivergencias(criar_painel_api(timeout=timeout)).detectar()
        return JsonResponse({'success': True, **relatorio.to_dict()})
    except Exception as e:
        logger.exception(f'Erro ao verificar divergências: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_http_methods(["GET", "PUT"])
@login_required
def configuracao_automacao(request):
    """
    GET: configuração atual da renovação automática.
    PUT: atualiza a configuração (JSON). Vale a partir do próximo ciclo.
    """
    armazenamento = ArmazenamentoSistemas()
    try:
        if request.method == 'GET':
            config = armazenamento.obter_configuracao()
            return JsonResponse({'success': True, 'configuracao': _serializar_configuracao(config)})

        dados = json.loads(request.body)
        if not isinstance(dados, dict):
            return JsonResponse({'success': False, 'error': 'Dados inválidos.'}, status=400)

        config = armazenamento.atualizar_configuracao(**dados)
        logger.info(f'Configuração de automação atualizada por {request.user.username} (v{config.versao})')
        return JsonResponse({'success': True, 'configuracao': _serializar_configuracao(config)})

    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Dados inválidos.'}, status=400)
    except ValidationError as e:
        return JsonResponse({'success': False, 'error': ' '.join(e.messages)}, status=400)
    except Exception as e:
        logger.exception(f'Erro na configuração de automação: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_GET
@login_required
def logs_automacao(request):
    """Registros do ledger, mais recentes primeiro (?limit=N, padrão 50, máximo 500)."""
    limite = request.GET.get('limit')
    try:
        limite = int(limite) if limite not in (None, '') else LIMITE_PADRAO
    except ValueError:
        return JsonResponse({'success': False, 'error': 'Parâmetro limit inválido.'}, status=400)

    try:
        logs = LedgerAutomacao().recentes(limite)
        return JsonResponse({
            'success': True,
            'limite_maximo': LIMITE_MAXIMO,
            'logs': [_serializar_log(log) for log in logs],
        })
    except Exception as e:
        logger.exception(f'Erro ao listar logs de automação: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_GET
@login_required
def renovacoes_agendadas(request):
    try:
        agendadas = get_renovacao_service().obter_renovacoes_agendadas()
        return JsonResponse({'success': True, 'total': len(agendadas), 'renovacoes': agendadas})
    except Exception as e:
        logger.exception(f'Erro ao listar renovações agendadas: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_GET
@login_required
def status_renovacoes(request):
    try:
        return JsonResponse({'success': True, 'status': get_renovacao_service().obter_status()})
    except Exception as e:
        logger.exception(f'Erro ao consultar status da renovação: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_POST
@login_required
def forcar_renovacao(request, sistema_id):
    """
    Renova um sistema imediatamente, fora da janela.

    Response:
    - 200: renovado
    - 404: sistema inexistente
    - 409: renovação recusada (bloqueado, já renovado, erro do painel)
    """
    try:
        resultado = get_renovacao_service().forcar_renovacao(sistema_id)
        logger.info(f'Renovação manual de {resultado.username} por {request.user.username}: {resultado.mensagem}')
        return JsonResponse({'success': resultado.sucesso, **resultado.to_dict()},
                            status=200 if resultado.sucesso else 409)
    except Sistema.DoesNotExist:
        return JsonResponse({'success': False, 'error': 'Sistema não encontrado.'}, status=404)
    except Exception as e:
        logger.exception(f'Erro ao forçar renovação do sistema {sistema_id}: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)


@require_POST
@login_required
def desbloquear_renovacao(request, sistema_id):
    try:
        if not ArmazenamentoSistemas().desbloquear_renovacao([sistema_id]):
            return JsonResponse({'success': False, 'error': 'Sistema não encontrado.'}, status=404)
        logger.info(f'Renovação do sistema {sistema_id} desbloqueada por {request.user.username}')
        return JsonResponse({'success': True})
    except Exception as e:
        logger.exception(f'Erro ao desbloquear sistema {sistema_id}: {e}')
        return JsonResponse({'success': False, 'error': str(e)}, status=500)
