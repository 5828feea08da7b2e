from datetime import datetime, timezone as dt_timezone
from unittest import mock

import requests
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from sistemas.services.painel_api import (
    PainelAPI,
    PermanentRemoteError,
    TransientRemoteError,
    criar_painel_api,
    parse_expiracao,
)

REQUEST_PATH = 'sistemas.services.painel_api.requests.request'


def resposta(status=200, dados=None, texto=None):
    response = mock.Mock()
    response.status_code = status
    if texto is not None:
        response.text = texto
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.text = str(dados)
        response.json.return_value = dados
    return response


class PainelAPITests(SimpleTestCase):

    def setUp(self):
        self.api = PainelAPI('https://painel.exemplo.com/api/', 'chave-secreta', timeout=7)

    @mock.patch(REQUEST_PATH)
    def test_lista_sistemas_com_expiracao_iso_e_epoch(self, request):
        request.return_value = resposta(dados={
            'success': True,
            'data': [
                {'system_id': 10, 'username': 'usuario01', 'password': 'a',
                 'max_pontos_ativos': 3, 'expiracao': '2026-02-01T10:00:00Z'},
                {'system_id': '11', 'username': 'usuario02', 'password': 'b', 'expiracao': 1769940000},
            ]
        })

        contas = self.api.list_accounts()

        self.assertEqual([c.username for c in contas], ['usuario01', 'usuario02'])
        self.assertEqual(contas[0].system_id, '10')
        self.assertEqual(contas[0].max_pontos_ativos, 3)
        self.assertEqual(contas[0].expiracao, datetime(2026, 2, 1, 10, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(contas[1].max_pontos_ativos, 100)
        self.assertEqual(contas[1].expiracao, datetime.fromtimestamp(1769940000, tz=dt_timezone.utc))

        args, kwargs = request.call_args
        self.assertEqual(args, ('GET', 'https://painel.exemplo.com/api/system_credentials/get'))
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer chave-secreta')
        self.assertEqual(kwargs['timeout'], 7)

    @mock.patch(REQUEST_PATH)
    def test_item_malformado_invalida_a_listagem(self, request):
        request.return_value = resposta(dados={'success': True, 'data': [{'system_id': 1, 'password': 'x'}]})

        with self.assertRaises(TransientRemoteError):
            self.api.list_accounts()

    @mock.patch(REQUEST_PATH)
    def test_timeout_e_transitorio(self, request):
        request.side_effect = requests.exceptions.Timeout()

        with self.assertRaises(TransientRemoteError):
            self.api.list_accounts()

    @mock.patch(REQUEST_PATH)
    def test_erro_de_conexao_e_transitorio(self, request):
        request.side_effect = requests.exceptions.ConnectionError()

        with self.assertRaises(TransientRemoteError):
            self.api.renew_account('10')

    @mock.patch(REQUEST_PATH)
    def test_5xx_e_429_sao_transitorios(self, request):
        for status in (500, 503, 429):
            with self.subTest(status=status):
                request.return_value = resposta(status=status, dados={'success': False, 'error': 'ocupado'})
                with self.assertRaises(TransientRemoteError) as ctx:
                    self.api.renew_account('10')
                self.assertEqual(ctx.exception.code, status)

    @mock.patch(REQUEST_PATH)
    def test_4xx_e_permanente(self, request):
        request.return_value = resposta(status=404, dados={'success': False, 'error': 'Sistema não encontrado'})

        with self.assertRaises(PermanentRemoteError) as ctx:
            self.api.renew_account('10')

        self.assertEqual(ctx.exception.code, 404)
        self.assertIn('Sistema não encontrado', str(ctx.exception))

    @mock.patch(REQUEST_PATH)
    def test_recusa_explicita_e_permanente(self, request):
        request.return_value = resposta(dados={'success': False, 'message': 'Créditos insuficientes'})

        with self.assertRaises(PermanentRemoteError):
            self.api.renew_account('10')

    @mock.patch(REQUEST_PATH)
    def test_resposta_nao_json_e_transitoria(self, request):
        request.return_value = resposta(texto='<html>Bad Gateway</html>')

        with self.assertRaises(TransientRemoteError):
            self.api.list_accounts()

    @mock.patch(REQUEST_PATH)
    def test_renovacao_retorna_nova_expiracao(self, request):
        request.return_value = resposta(dados={'success': True, 'data': {'expiracao': '2026-03-01T00:00:00+00:00'}})

        resultado = self.api.renew_account('10')

        self.assertEqual(resultado.nova_expiracao, datetime(2026, 3, 1, tzinfo=dt_timezone.utc))
        args, _ = request.call_args
        self.assertEqual(args, ('POST', 'https://painel.exemplo.com/api/system_credentials/renovar/10'))

    @mock.patch(REQUEST_PATH)
    def test_renovacao_sem_expiracao_e_permanente(self, request):
        request.return_value = resposta(dados={'success': True, 'data': {}})

        with self.assertRaises(PermanentRemoteError):
            self.api.renew_account('10')

    @mock.patch(REQUEST_PATH)
    def test_provisionamento(self, request):
        request.return_value = resposta(dados={'success': True, 'data': {'id': 99}})
        criada = self.api.create_account('novo', 'senha', max_pontos_ativos=2)
        self.assertEqual(criada.system_id, '99')
        self.assertEqual(request.call_args.kwargs['json'], {'username': 'novo', 'password': 'senha', 'max_pontos_ativos': 2})

        request.return_value = resposta(dados={'success': True, 'data': None})
        self.assertIsNone(self.api.update_account('99', password='outra'))
        self.assertEqual(request.call_args.args[0], 'PUT')

        self.assertTrue(self.api.delete_account('99'))
        self.assertEqual(request.call_args.args,
                         ('DELETE', 'https://painel.exemplo.com/api/system_credentials/apagar/99'))


@override_settings(TIME_ZONE='America/Sao_Paulo')
class ParseExpiracaoTests(SimpleTestCase):

    def test_data_sem_fuso_usa_fuso_do_projeto(self):
        data = parse_expiracao('2026-01-15 12:00:00')
        self.assertEqual(data, datetime(2026, 1, 15, 15, 0, tzinfo=dt_timezone.utc))

    def test_epoch_em_string(self):
        self.assertEqual(parse_expiracao('0'), datetime(1970, 1, 1, tzinfo=dt_timezone.utc))

    def test_vazio_e_invalido(self):
        self.assertIsNone(parse_expiracao(None))
        self.assertIsNone(parse_expiracao(''))
        with self.assertRaises(ValueError):
            parse_expiracao('amanhã')


class CriarPainelAPITests(SimpleTestCase):

    @override_settings(PAINEL_API_URL='', PAINEL_API_KEY='')
    def test_sem_configuracao(self):
        with self.assertRaises(ImproperlyConfigured):
            criar_painel_api()

    @override_settings(PAINEL_API_URL='https://painel.exemplo.com', PAINEL_API_KEY='k', PAINEL_API_TIMEOUT=10)
    def test_timeout_das_settings_ou_explicito(self):
        self.assertEqual(criar_painel_api().timeout, 10)
        self.assertEqual(criar_painel_api(timeout=3).timeout, 3)
