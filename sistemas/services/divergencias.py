"""
Detecção de divergências entre o banco local e o painel.

Somente leitura: nada é gravado. Usada pela interface para avisar o
operador antes de uma sincronização.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from sistemas.services.armazenamento import ArmazenamentoSistemas, LocalStoreError
from sistemas.services.logging_config import get_sincronizacao_logger
from sistemas.services.painel_api import APIError, BasePainelAPI
from sistemas.services.sincronizacao import campos_divergentes, indexar_por_username


@dataclass
class RelatorioDivergencias:
    """
    Resumo das divergências.

    Se o painel não respondeu, api_conectada é False e erro traz o motivo:
    tem_divergencias=False nesse caso NÃO significa que está sincronizado.
    """
    tem_divergencias: bool = False
    quantidade: int = 0
    ausentes_localmente: List[str] = field(default_factory=list)
    ausentes_remotamente: List[str] = field(default_factory=list)
    divergentes: List[Dict] = field(default_factory=list)
    total_local: int = 0
    total_remoto: int = 0
    api_conectada: bool = True
    erro: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class DetectorDivergencias:

    def __init__(self, painel: BasePainelAPI, armazenamento: Optional[ArmazenamentoSistemas] = None, logger=None):
        self.painel = painel
        self.armazenamento = armazenamento or ArmazenamentoSistemas()
        self.log = logger or get_sincronizacao_logger()

    def detectar(self) -> RelatorioDivergencias:
        try:
            sistemas_locais = self.armazenamento.listar_sistemas()
        except LocalStoreError as e:
            self.log.error(f'Divergências: falha ao listar sistemas locais: {e}')
            return RelatorioDivergencias(erro=str(e))

        try:
            contas_remotas = self.painel.list_accounts()
        except APIError as e:
            self.log.warning(f'Divergências: painel indisponível: {e}')
            return RelatorioDivergencias(
                total_local=len(sistemas_locais),
                api_conectada=False,
                erro=str(e),
            )

        remotas, _ = indexar_por_username(contas_remotas)
        locais = {sistema.username: sistema for sistema in sistemas_locais}

        ausentes_localmente = sorted(set(remotas) - set(locais))
        ausentes_remotamente = sorted(set(locais) - set(remotas))
        divergentes = []
        for username in sorted(set(locais) & set(remotas)):
            diferencas = campos_divergentes(locais[username], remotas[username])
            if diferencas:
                divergentes.append({'username': username, 'campos': sorted(diferencas)})

        quantidade = len(ausentes_localmente) + len(ausentes_remotamente) + len(divergentes)

        relatorio = RelatorioDivergencias(
            tem_divergencias=quantidade > 0,
            quantidade=quantidade,
            ausentes_localmente=ausentes_localmente,
            ausentes_remotamente=ausentes_remotamente,
            divergentes=divergentes,
            total_local=len(locais),
            total_remoto=len(remotas),
        )
        self.log.debug(f'Divergências encontradas: {quantidade}')
        return relatorio
