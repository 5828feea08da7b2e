from datetime import timedelta

from django.test import TestCase

from sistemas.models import LogTarefaAutomacao, Sistema
from sistemas.services.divergencias import DetectorDivergencias
from sistemas.services.painel_api import TransientRemoteError
from sistemas.tests.fakes import AGORA, PainelFake, conta, criar_sistema


class DivergenciasTests(TestCase):

    def setUp(self):
        self.painel = PainelFake()

    def detectar(self):
        return DetectorDivergencias(self.painel).detectar()

    def test_ausentes_em_cada_lado(self):
        criar_sistema('A', expiracao=AGORA)
        criar_sistema('C')
        self.painel.contas['A'] = conta('A', expiracao=AGORA)
        self.painel.contas['B'] = conta('B')

        relatorio = self.detectar()

        self.assertTrue(relatorio.tem_divergencias)
        self.assertEqual(relatorio.ausentes_localmente, ['B'])
        self.assertEqual(relatorio.ausentes_remotamente, ['C'])
        self.assertEqual(relatorio.divergentes, [])
        self.assertEqual(relatorio.quantidade, 2)
        self.assertEqual((relatorio.total_local, relatorio.total_remoto), (2, 2))
        self.assertTrue(relatorio.api_conectada)

    def test_sem_divergencias(self):
        criar_sistema('A', expiracao=AGORA)
        self.painel.contas['A'] = conta('A', expiracao=AGORA)

        relatorio = self.detectar()

        self.assertFalse(relatorio.tem_divergencias)
        self.assertEqual(relatorio.quantidade, 0)
        self.assertIsNone(relatorio.erro)

    def test_campos_diferentes_sao_reportados(self):
        criar_sistema('A', expiracao=AGORA)
        self.painel.contas['A'] = conta('A', expiracao=AGORA + timedelta(days=30), max_pontos_ativos=2)

        relatorio = self.detectar()

        self.assertTrue(relatorio.tem_divergencias)
        self.assertEqual(relatorio.divergentes, [{'username': 'A', 'campos': ['expiracao', 'max_pontos_ativos']}])

    def test_painel_indisponivel_nao_reporta_sincronizado(self):
        criar_sistema('A')
        self.painel.erro_listagem = TransientRemoteError('Request timeout after 5s')

        relatorio = self.detectar()

        self.assertFalse(relatorio.tem_divergencias)
        self.assertFalse(relatorio.api_conectada)
        self.assertIn('timeout', relatorio.erro)
        self.assertEqual(relatorio.total_local, 1)

    def test_nao_altera_banco(self):
        criar_sistema('C')
        self.painel.contas['B'] = conta('B')

        self.detectar()

        self.assertEqual(list(Sistema.objects.values_list('username', flat=True)), ['C'])
        self.assertFalse(LogTarefaAutomacao.objects.exists())
        self.assertEqual(self.painel.escritas, [])
