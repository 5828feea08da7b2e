from datetime import timedelta

from django.test import TestCase

from sistemas.models import ConfiguracaoAutomacao, LogTarefaAutomacao, Sistema
from sistemas.services.armazenamento import ArmazenamentoSistemas, LocalStoreError
from sistemas.services.painel_api import TransientRemoteError
from sistemas.services.sincronizacao import SincronizadorSistemas
from sistemas.tests.fakes import AGORA, PainelFake, conta, criar_sistema


class ArmazenamentoComFalha(ArmazenamentoSistemas):
    """Falha na gravação de um username específico."""

    def __init__(self, username_com_falha):
        self.username_com_falha = username_com_falha

    def upsert_sistema(self, conta, config=None):
        if conta.username == self.username_com_falha:
            raise LocalStoreError('database is locked', operacao='upsert_sistema')
        return super().upsert_sistema(conta, config)


class SincronizacaoTests(TestCase):

    def setUp(self):
        self.painel = PainelFake()

    def sincronizar(self, armazenamento=None):
        return SincronizadorSistemas(self.painel, armazenamento=armazenamento).reconciliar()

    def test_cria_sistemas_do_painel_com_padroes_da_configuracao(self):
        config = ConfiguracaoAutomacao.get_config()
        config.renovacao_automatica_padrao = True
        config.save()
        self.painel.contas['usuario01'] = conta('usuario01', max_pontos_ativos=3, expiracao=AGORA)

        resultado = self.sincronizar()

        self.assertEqual((resultado.criados, resultado.atualizados, resultado.removidos), (1, 0, 0))
        sistema = Sistema.objects.get(username='usuario01')
        self.assertEqual(sistema.system_id, 'id-usuario01')
        self.assertEqual(sistema.max_pontos_ativos, 3)
        self.assertEqual(sistema.expiracao, AGORA)
        self.assertTrue(sistema.renovacao_automatica)
        self.assertIsNone(sistema.antecedencia_renovacao)

    def test_remove_sistemas_ausentes_no_painel(self):
        criar_sistema('antigo')

        resultado = self.sincronizar()

        self.assertEqual(resultado.removidos, 1)
        self.assertFalse(Sistema.objects.filter(username='antigo').exists())

    def test_atualiza_campos_espelhados_e_preserva_agendamento(self):
        criar_sistema(
            'usuario01', expiracao=AGORA, password='antiga', renovacao_automatica=True,
            antecedencia_renovacao=30, contador_renovacoes=3, nota='cliente vip'
        )
        nova_expiracao = AGORA + timedelta(days=30)
        self.painel.contas['usuario01'] = conta('usuario01', password='nova', expiracao=nova_expiracao)

        resultado = self.sincronizar()

        self.assertEqual(resultado.atualizados, 1)
        sistema = Sistema.objects.get(username='usuario01')
        self.assertEqual(sistema.password, 'nova')
        self.assertEqual(sistema.expiracao, nova_expiracao)
        self.assertTrue(sistema.renovacao_automatica)
        self.assertEqual(sistema.antecedencia_renovacao, 30)
        self.assertEqual(sistema.contador_renovacoes, 3)
        self.assertEqual(sistema.nota, 'cliente vip')

    def test_segunda_execucao_sem_mudancas_nao_altera_nada(self):
        criar_sistema('sobra')
        criar_sistema('usuario01', expiracao=AGORA, password='antiga')
        self.painel.contas['usuario01'] = conta('usuario01', expiracao=AGORA + timedelta(days=1))
        self.painel.contas['usuario02'] = conta('usuario02', expiracao=AGORA)

        primeiro = self.sincronizar()
        segundo = self.sincronizar()

        self.assertEqual((primeiro.criados, primeiro.atualizados, primeiro.removidos), (1, 1, 1))
        self.assertEqual((segundo.criados, segundo.atualizados, segundo.removidos), (0, 0, 0))
        self.assertEqual(segundo.erros, [])

    def test_converge_para_o_estado_do_painel(self):
        criar_sistema('a', expiracao=AGORA, max_pontos_ativos=1)
        criar_sistema('c')
        self.painel.contas['a'] = conta('a', max_pontos_ativos=5, expiracao=AGORA + timedelta(days=3))
        self.painel.contas['b'] = conta('b', password='xyz', expiracao=AGORA + timedelta(days=7))

        self.sincronizar()

        locais = {s.username: s for s in Sistema.objects.all()}
        self.assertEqual(set(locais), set(self.painel.contas))
        for username, remota in self.painel.contas.items():
            for campo, valor in remota.campos_espelhados().items():
                self.assertEqual(getattr(locais[username], campo), valor, f'{username}.{campo}')

    def test_falha_na_listagem_aborta_sem_alteracoes(self):
        criar_sistema('usuario01')
        self.painel.erro_listagem = TransientRemoteError('Request timeout after 10s')

        resultado = self.sincronizar()

        self.assertTrue(resultado.abortado)
        self.assertEqual(len(resultado.erros), 1)
        self.assertEqual((resultado.criados, resultado.atualizados, resultado.removidos), (0, 0, 0))
        self.assertTrue(Sistema.objects.filter(username='usuario01').exists())
        self.assertTrue(LogTarefaAutomacao.objects.filter(
            tipo_tarefa=LogTarefaAutomacao.TIPO_SINCRONIZACAO, status='failure'
        ).exists())

    def test_erro_em_um_sistema_nao_interrompe_o_lote(self):
        for username in ('a', 'quebrado', 'z'):
            self.painel.contas[username] = conta(username)

        resultado = self.sincronizar(armazenamento=ArmazenamentoComFalha('quebrado'))

        self.assertEqual(resultado.criados, 2)
        self.assertEqual(len(resultado.erros), 1)
        self.assertIn('quebrado', resultado.erros[0])
        self.assertEqual(set(Sistema.objects.values_list('username', flat=True)), {'a', 'z'})

    def test_registra_inicio_e_fim_no_ledger(self):
        self.painel.contas['usuario01'] = conta('usuario01')

        self.sincronizar()

        registros = list(LogTarefaAutomacao.objects.filter(
            tipo_tarefa=LogTarefaAutomacao.TIPO_SINCRONIZACAO
        ).order_by('id'))
        self.assertEqual([r.status for r in registros], ['started', 'success'])
        self.assertEqual(registros[0].correlacao_id, registros[1].correlacao_id)
        self.assertIn('Criados: 1', registros[1].mensagem)

    def test_nunca_escreve_no_painel(self):
        criar_sistema('local')
        self.painel.contas['remoto'] = conta('remoto')

        self.sincronizar()

        self.assertEqual(self.painel.escritas, [])
