"""
Painel API Client - Cliente para a API do painel IPTV remoto

Este módulo fornece uma interface Python para os endpoints de sistemas
(credenciais) do painel. Toda requisição tem timeout explícito; timeout é
tratado como falha transitória.

Uso:
    from sistemas.services.painel_api import criar_painel_api

    api = criar_painel_api()

    # Listar sistemas do painel
    contas = api.list_accounts()

    # Renovar um sistema
    resultado = api.renew_account('42')
    print(resultado.nova_expiracao)
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from sistemas.services.logging_config import LogTemplates, get_painel_logger


class APIError(Exception):
    """Exceção base para erros do painel remoto"""

    def __init__(self, message: str, code: Optional[int] = None, endpoint: Optional[str] = None):
        self.message = message
        self.code = code
        self.endpoint = endpoint

        error_msg = "API Error"
        if code:
            error_msg += f" {code}"
        if endpoint:
            error_msg += f" on {endpoint}"
        error_msg += f": {message}"

        super().__init__(error_msg)


class TransientRemoteError(APIError):
    """Timeout, 5xx, 429, erro de conexão ou resposta malformada. Repetido no próximo ciclo."""


class PermanentRemoteError(APIError):
    """4xx ou rejeição explícita: sistema inexistente, credenciais inválidas, renovação recusada."""


def parse_expiracao(valor: Any) -> Optional[datetime]:
    """
    Converte a expiração recebida do painel em datetime aware.

    Aceita ISO-8601 ou epoch em segundos (int, float ou string numérica).
    Datas ISO sem fuso são interpretadas no fuso padrão do projeto.

    Raises:
        ValueError: se o valor não puder ser interpretado
    """
    if valor in (None, ''):
        return None

    if isinstance(valor, datetime):
        data = valor
    elif isinstance(valor, (int, float)) or (isinstance(valor, str) and valor.strip().isdigit()):
        data = datetime.fromtimestamp(int(valor), tz=dt_timezone.utc)
    else:
        data = parse_datetime(str(valor).strip())
        if data is None:
            raise ValueError(f"Expiração inválida: {valor!r}")

    if timezone.is_naive(data):
        data = timezone.make_aware(data)
    return data


@dataclass
class ContaRemota:
    """Sistema como visto pelo painel remoto."""
    system_id: str
    username: str
    password: str
    max_pontos_ativos: int = 100
    expiracao: Optional[datetime] = None

    @classmethod
    def from_api(cls, dados: Dict[str, Any]) -> 'ContaRemota':
        """
        Monta a conta a partir do payload do painel.

        Raises:
            ValueError: se faltar username ou algum campo for inválido
        """
        username = (dados.get('username') or '').strip()
        if not username:
            raise ValueError(f"Sistema sem username no payload: {dados!r}")

        max_pontos = dados.get('max_pontos_ativos')
        return cls(
            system_id=str(dados.get('system_id') or dados.get('id') or ''),
            username=username,
            password=dados.get('password') or '',
            max_pontos_ativos=int(max_pontos) if max_pontos not in (None, '') else 100,
            expiracao=parse_expiracao(dados.get('expiracao', dados.get('exp_date'))),
        )

    def campos_espelhados(self) -> Dict[str, Any]:
        """Campos que o painel controla e a sincronização copia para o banco local."""
        return {
            'system_id': self.system_id,
            'password': self.password,
            'max_pontos_ativos': self.max_pontos_ativos,
            'expiracao': self.expiracao,
        }


@dataclass
class ResultadoRenovacaoRemota:
    """Resultado de uma renovação aceita pelo painel."""
    nova_expiracao: datetime
    raw_response: Optional[Dict[str, Any]] = None


class BasePainelAPI(ABC):
    """Interface do painel remoto consumida pela sincronização e pela renovação."""

    @abstractmethod
    def list_accounts(self) -> List[ContaRemota]:
        """Lista todos os sistemas do painel."""

    @abstractmethod
    def renew_account(self, system_id: str) -> ResultadoRenovacaoRemota:
        """Renova um sistema e retorna a nova expiração definida pelo painel."""

    @abstractmethod
    def create_account(self, username: str, password: str, max_pontos_ativos: Optional[int] = None,
                       expiracao: Optional[datetime] = None) -> ContaRemota:
        """Cria um sistema no painel (provisionamento)."""

    @abstractmethod
    def update_account(self, system_id: str, **campos) -> Optional[ContaRemota]:
        """Atualiza um sistema no painel (provisionamento)."""

    @abstractmethod
    def delete_account(self, system_id: str) -> bool:
        """Remove um sistema do painel (provisionamento)."""


class PainelAPI(BasePainelAPI):
    """
    Cliente HTTP do painel remoto

    Attributes:
        base_url (str): URL base da API
        timeout (float): Timeout para requisições em segundos
    """

    ENDPOINT_LISTAR = '/system_credentials/get'
    ENDPOINT_ADICIONAR = '/system_credentials/adicionar'
    ENDPOINT_EDITAR = '/system_credentials/editar/{system_id}'
    ENDPOINT_APAGAR = '/system_credentials/apagar/{system_id}'
    ENDPOINT_RENOVAR = '/system_credentials/renovar/{system_id}'

    def __init__(self, base_url: str, api_key: str, timeout: float = 10, logger=None):
        """
        Inicializa o cliente da API

        Args:
            base_url: URL base do painel
            api_key: Chave da API (enviada como Bearer)
            timeout: Timeout para requisições em segundos (default: 10)
            logger: Logger opcional (default: logger PainelAPI)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json'
        }
        self.log = logger or get_painel_logger()

        self.log.debug(f"PainelAPI inicializado: base_url={self.base_url}, timeout={timeout}s")

    # ==================== MÉTODOS INTERNOS ====================

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Faz a requisição HTTP sempre com timeout.

        Raises:
            TransientRemoteError: timeout, erro de conexão ou falha de transporte
        """
        url = f"{self.base_url}{endpoint}"
        kwargs.setdefault('timeout', self.timeout)

        self.log.debug(LogTemplates.API_REQUEST, endpoint, method)

        try:
            response = requests.request(method, url, headers=self.headers, **kwargs)
        except requests.exceptions.Timeout:
            self.log.error(f"Timeout após {kwargs['timeout']}s em {method} {endpoint}")
            raise TransientRemoteError(f"Request timeout after {kwargs['timeout']}s", endpoint=endpoint)
        except requests.exceptions.ConnectionError:
            self.log.error(f"Erro de conexão em {method} {endpoint}")
            raise TransientRemoteError("Connection error", endpoint=endpoint)
        except requests.exceptions.RequestException as e:
            self.log.error(f"Erro inesperado em {method} {endpoint}: {e}")
            raise TransientRemoteError(f"Request failed: {e}", endpoint=endpoint)

        self.log.debug(LogTemplates.API_RESPONSE, endpoint, response.status_code)
        return response

    def _handle_response(self, response: requests.Response, endpoint: str = '') -> Any:
        """
        Valida o envelope {success, data, message|error} e retorna 'data'.

        Raises:
            TransientRemoteError: 429, 5xx ou resposta não-JSON
            PermanentRemoteError: demais 4xx ou success=false
        """
        status = response.status_code

        if status == 429 or status >= 500:
            self.log.warning(LogTemplates.API_ERROR, endpoint, status, response.text[:200])
            raise TransientRemoteError(f"Erro HTTP {status}", code=status, endpoint=endpoint)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            raw_content = response.text[:200]
            if 400 <= status < 500:
                raise PermanentRemoteError(f"Erro HTTP {status}: {raw_content}", code=status, endpoint=endpoint)
            self.log.error(f"Resposta inválida (não é JSON) de {endpoint}: {raw_content}")
            raise TransientRemoteError(
                f"Resposta inválida (não é JSON) - Status {status}",
                code=status,
                endpoint=endpoint
            )

        if 400 <= status < 500:
            mensagem = data.get('error') or data.get('message') if isinstance(data, dict) else None
            self.log.warning(LogTemplates.API_ERROR, endpoint, status, mensagem)
            raise PermanentRemoteError(mensagem or f"Erro HTTP {status}", code=status, endpoint=endpoint)

        if not isinstance(data, dict):
            raise TransientRemoteError("Envelope de resposta inesperado", code=status, endpoint=endpoint)

        if data.get('success') is False:
            mensagem = data.get('error') or data.get('message') or 'Operação recusada pelo painel'
            self.log.warning(LogTemplates.API_ERROR, endpoint, status, mensagem)
            raise PermanentRemoteError(mensagem, code=status, endpoint=endpoint)

        return data.get('data')

    # ==================== SISTEMAS ====================

    def list_accounts(self) -> List[ContaRemota]:
        """
        Lista todos os sistemas do painel.

        Um item malformado invalida a listagem inteira: a sincronização não
        pode confundir um item ilegível com um sistema ausente.
        """
        response = self._request('GET', self.ENDPOINT_LISTAR)
        data = self._handle_response(response, self.ENDPOINT_LISTAR)

        if data is None:
            data = []
        if not isinstance(data, list):
            raise TransientRemoteError("Listagem de sistemas não é uma lista", endpoint=self.ENDPOINT_LISTAR)

        contas = []
        for item in data:
            try:
                contas.append(ContaRemota.from_api(item))
            except (ValueError, TypeError, AttributeError) as e:
                raise TransientRemoteError(f"Item inválido na listagem: {e}", endpoint=self.ENDPOINT_LISTAR)

        self.log.debug(f"Sistemas retornados pelo painel: {len(contas)}")
        return contas

    def renew_account(self, system_id: str) -> ResultadoRenovacaoRemota:
        """
        Renova um sistema.

        Se o painel confirmar a renovação sem informar a nova expiração, o
        resultado é tratado como erro permanente: repetir poderia renovar duas vezes.
        """
        endpoint = self.ENDPOINT_RENOVAR.format(system_id=system_id)
        response = self._request('POST', endpoint)
        data = self._handle_response(response, endpoint) or {}

        bruto = data.get('expiracao', data.get('exp_date')) if isinstance(data, dict) else None
        try:
            nova_expiracao = parse_expiracao(bruto)
        except ValueError as e:
            raise PermanentRemoteError(f"Renovação confirmada com expiração inválida: {e}", endpoint=endpoint)
        if nova_expiracao is None:
            raise PermanentRemoteError("Renovação confirmada sem nova expiração", endpoint=endpoint)

        self.log.info(f"Sistema {system_id} renovado no painel até {nova_expiracao.isoformat()}")
        return ResultadoRenovacaoRemota(nova_expiracao=nova_expiracao, raw_response=data)

    def create_account(self, username: str, password: str, max_pontos_ativos: Optional[int] = None,
                       expiracao: Optional[datetime] = None) -> ContaRemota:
        payload: Dict[str, Any] = {'username': username, 'password': password}
        if max_pontos_ativos is not None:
            payload['max_pontos_ativos'] = max_pontos_ativos
        if expiracao is not None:
            payload['expiracao'] = expiracao.isoformat()

        response = self._request('POST', self.ENDPOINT_ADICIONAR, json=payload)
        data = self._handle_response(response, self.ENDPOINT_ADICIONAR)

        if isinstance(data, dict) and data.get('username'):
            return ContaRemota.from_api(data)

        # Alguns painéis devolvem apenas o id criado
        system_id = data.get('id', '') if isinstance(data, dict) else (data or '')
        return ContaRemota(
            system_id=str(system_id),
            username=username,
            password=password,
            max_pontos_ativos=max_pontos_ativos if max_pontos_ativos is not None else 100,
            expiracao=expiracao,
        )

    def update_account(self, system_id: str, **campos) -> Optional[ContaRemota]:
        endpoint = self.ENDPOINT_EDITAR.format(system_id=system_id)
        payload = {
            chave: (valor.isoformat() if isinstance(valor, datetime) else valor)
            for chave, valor in campos.items()
        }
        response = self._request('PUT', endpoint, json=payload)
        data = self._handle_response(response, endpoint)
        if isinstance(data, dict) and data.get('username'):
            return ContaRemota.from_api(data)
        return None

    def delete_account(self, system_id: str) -> bool:
        endpoint = self.ENDPOINT_APAGAR.format(system_id=system_id)
        response = self._request('DELETE', endpoint)
        self._handle_response(response, endpoint)
        return True


def criar_painel_api(timeout: Optional[float] = None) -> PainelAPI:
    """
    Cria o cliente a partir das settings (PAINEL_API_URL, PAINEL_API_KEY, PAINEL_API_TIMEOUT).

    Raises:
        ImproperlyConfigured: se a URL ou a chave do painel não estiverem definidas
    """
    base_url = getattr(settings, 'PAINEL_API_URL', '')
    api_key = getattr(settings, 'PAINEL_API_KEY', '')
    if not base_url or not api_key:
        raise ImproperlyConfigured('PAINEL_API_URL e PAINEL_API_KEY devem estar configuradas.')

    if timeout is None:
        timeout = getattr(settings, 'PAINEL_API_TIMEOUT', 10)
    return PainelAPI(base_url=base_url, api_key=api_key, timeout=timeout)
