from datetime import timedelta

from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings

from sistemas.models import ConfiguracaoAutomacao, LogTarefaAutomacao, Sistema, validar_antecedencia_renovacao
from sistemas.services.armazenamento import ArmazenamentoSistemas
from sistemas.services.ledger import LedgerAutomacao
from sistemas.tests.fakes import AGORA, conta, criar_sistema


class ModelsTests(TestCase):

    def test_configuracao_e_singleton(self):
        ConfiguracaoAutomacao(ativo=True).save()
        ConfiguracaoAutomacao(ativo=False).save()
        ConfiguracaoAutomacao.get_config().delete()

        self.assertEqual(ConfiguracaoAutomacao.objects.count(), 1)
        self.assertFalse(ConfiguracaoAutomacao.get_config().ativo)

    @override_settings(RENOVACAO_ANTECEDENCIA_MAXIMA=10080)
    def test_limites_da_antecedencia(self):
        validar_antecedencia_renovacao(None)
        validar_antecedencia_renovacao(1)
        validar_antecedencia_renovacao(10080)
        for invalido in (0, 10081):
            with self.subTest(valor=invalido), self.assertRaises(ValidationError):
                validar_antecedencia_renovacao(invalido)

    def test_janela_usa_antecedencia_do_sistema_ou_da_configuracao(self):
        config = ConfiguracaoAutomacao.get_config()
        herdado = criar_sistema('herdado', expiracao=AGORA)
        proprio = criar_sistema('proprio', expiracao=AGORA, antecedencia_renovacao=15)

        self.assertEqual(herdado.inicio_janela_renovacao(config), AGORA - timedelta(minutes=60))
        self.assertEqual(proprio.inicio_janela_renovacao(config), AGORA - timedelta(minutes=15))
        self.assertIsNone(criar_sistema('sem_data').inicio_janela_renovacao(config))

    def test_log_e_imutavel(self):
        log = LogTarefaAutomacao.objects.create(tipo_tarefa='renovacao', status='started')

        log.mensagem = 'alterado'
        with self.assertRaises(ValidationError):
            log.save()
        with self.assertRaises(ValidationError):
            log.delete()
        self.assertEqual(LogTarefaAutomacao.objects.get(pk=log.pk).mensagem, '')

    def test_log_mantem_username_apos_remocao_do_sistema(self):
        sistema = criar_sistema('usuario01', expiracao=AGORA)
        log = LedgerAutomacao().registrar('renovacao', 'success', sistema=sistema)

        sistema.delete()
        log.refresh_from_db()

        self.assertIsNone(log.sistema_id)
        self.assertEqual(log.sistema_username, 'usuario01')
        self.assertEqual(log.expiracao_referencia, AGORA)


class ArmazenamentoTests(TestCase):

    def setUp(self):
        self.armazenamento = ArmazenamentoSistemas()

    def test_atualizar_configuracao_incrementa_versao(self):
        versao = self.armazenamento.obter_configuracao().versao

        config = self.armazenamento.atualizar_configuracao(ativo=True, antecedencia_renovacao=30)

        self.assertTrue(config.ativo)
        self.assertEqual(config.antecedencia_renovacao, 30)
        self.assertEqual(config.versao, versao + 1)
        self.assertEqual(ConfiguracaoAutomacao.get_config().versao, versao + 1)

    def test_atualizar_configuracao_rejeita_valores_invalidos(self):
        invalidos = [
            {'antecedencia_renovacao': 0},
            {'antecedencia_renovacao': 999999},
            {'antecedencia_renovacao': '30'},
            {'antecedencia_renovacao': True},
            {'ativo': 'sim'},
            {'ultima_execucao_em': AGORA},
        ]
        for campos in invalidos:
            with self.subTest(campos=campos), self.assertRaises(ValidationError):
                self.armazenamento.atualizar_configuracao(**campos)

        self.assertEqual(ConfiguracaoAutomacao.get_config().versao, 1)

    def test_campos_espelhados_nao_tocam_agendamento(self):
        sistema = criar_sistema('usuario01', renovacao_automatica=True, contador_renovacoes=2)

        self.armazenamento.atualizar_campos_espelhados(sistema.pk, {
            'password': 'nova', 'contador_renovacoes': 0, 'renovacao_automatica': False,
        })

        sistema.refresh_from_db()
        self.assertEqual(sistema.password, 'nova')
        self.assertEqual(sistema.contador_renovacoes, 2)
        self.assertTrue(sistema.renovacao_automatica)

    def test_registrar_renovacao_nunca_diminui_expiracao(self):
        sistema = criar_sistema('usuario01', expiracao=AGORA)

        self.assertFalse(self.armazenamento.registrar_renovacao(sistema.pk, AGORA - timedelta(days=1), AGORA))
        self.assertTrue(self.armazenamento.registrar_renovacao(sistema.pk, AGORA + timedelta(days=30), AGORA))

        sistema.refresh_from_db()
        self.assertEqual(sistema.expiracao, AGORA + timedelta(days=30))
        self.assertEqual(sistema.contador_renovacoes, 1)
        self.assertEqual(sistema.ultima_renovacao_em, AGORA)

    def test_reserva_de_renovacao_e_exclusiva_por_expiracao(self):
        sistema = criar_sistema('usuario01', expiracao=AGORA)
        validade = timedelta(minutes=10)

        self.assertFalse(self.armazenamento.reservar_renovacao(sistema.pk, AGORA - timedelta(days=1), validade))
        self.assertTrue(self.armazenamento.reservar_renovacao(sistema.pk, AGORA, validade))
        self.assertFalse(self.armazenamento.reservar_renovacao(sistema.pk, AGORA, validade))

        self.armazenamento.liberar_renovacao(sistema.pk)
        self.assertTrue(self.armazenamento.reservar_renovacao(sistema.pk, AGORA, validade))

    def test_reserva_do_ciclo(self):
        validade = timedelta(minutes=10)

        self.assertTrue(self.armazenamento.reservar_ciclo(validade))
        self.assertFalse(self.armazenamento.reservar_ciclo(validade))
        self.assertTrue(ConfiguracaoAutomacao.get_config().ciclo_em_execucao)

        self.armazenamento.liberar_ciclo()
        self.assertFalse(ConfiguracaoAutomacao.get_config().ciclo_em_execucao)
        self.assertTrue(self.armazenamento.reservar_ciclo(validade))

    def test_atualizar_configuracao_preserva_marca_do_ciclo(self):
        self.armazenamento.reservar_ciclo(timedelta(minutes=10))

        self.armazenamento.atualizar_configuracao(ativo=True)

        self.assertTrue(ConfiguracaoAutomacao.get_config().ciclo_em_execucao)

    def test_upsert_cria_e_atualiza_pelo_username(self):
        sistema, criado = self.armazenamento.upsert_sistema(conta('usuario01', expiracao=AGORA))
        self.assertTrue(criado)

        sistema, criado = self.armazenamento.upsert_sistema(conta('usuario01', password='outra', expiracao=AGORA))
        self.assertFalse(criado)
        self.assertEqual(sistema.password, 'outra')
        self.assertEqual(Sistema.objects.count(), 1)


class LedgerTests(TestCase):

    def setUp(self):
        self.ledger = LedgerAutomacao()

    def test_recentes_mais_novos_primeiro_com_limite(self):
        for i in range(3):
            self.ledger.registrar('sincronizacao', 'success', mensagem=f'execucao {i}')

        recentes = self.ledger.recentes(2)

        self.assertEqual([r.mensagem for r in recentes], ['execucao 2', 'execucao 1'])
        self.assertEqual(len(self.ledger.recentes(0)), 1)
        self.assertEqual(len(self.ledger.recentes(None)), 3)

    def test_buscar_ultimo_para_expiracao(self):
        sistema = criar_sistema('usuario01', expiracao=AGORA)
        self.ledger.registrar('renovacao', 'started', sistema=sistema)
        sucesso = self.ledger.registrar('renovacao', 'success', sistema=sistema)
        self.ledger.registrar('renovacao', 'success', sistema=sistema, expiracao_referencia=AGORA + timedelta(days=1))

        encontrado = self.ledger.buscar_ultimo_para_expiracao(sistema.pk, AGORA, 'success', 'renovacao')

        self.assertEqual(encontrado.pk, sucesso.pk)
        self.assertIsNone(self.ledger.buscar_ultimo_para_expiracao(sistema.pk, AGORA, 'skipped'))
        self.assertIsNone(self.ledger.buscar_ultimo_para_expiracao(
            sistema.pk, AGORA, 'success', 'renovacao_expirada'
        ))
