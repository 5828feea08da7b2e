"""
Renovação automática dos sistemas no painel.

A cada ciclo (executado pelo scheduler em scripts/agendamentos.py):

1. Lê a configuração atualizada do banco.
2. Classifica os sistemas: expirados, fora da janela, pulados ou elegíveis.
3. Renova os elegíveis um a um, registrando 'started' e o status final no ledger.
4. Grava ultima_execucao_em na configuração.

Cada expiração é renovada no máximo uma vez: um registro 'success' no
ledger para (sistema, expiração) impede nova tentativa, e a chamada ao
painel só acontece com a reserva do sistema obtida no banco. A reserva
vale entre processos (scheduler, web e management commands).
"""

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils import timezone

from sistemas.models import ConfiguracaoAutomacao, LogTarefaAutomacao, Sistema
from sistemas.services.armazenamento import ArmazenamentoSistemas, LocalStoreError
from sistemas.services.ledger import LedgerAutomacao
from sistemas.services.logging_config import LogTemplates, get_renovacao_logger
from sistemas.services.painel_api import (
    APIError,
    BasePainelAPI,
    PermanentRemoteError,
    criar_painel_api,
)

# Erros de autenticação do painel valem para todos os sistemas: encerram o ciclo
CODIGOS_AUTENTICACAO = (401, 403)


class EstadoCiclo(Enum):
    OCIOSO = 'ocioso'
    VERIFICANDO = 'verificando'
    SEM_ELEGIVEIS = 'sem_elegiveis'
    PROCESSANDO = 'processando'


@dataclass
class ResultadoCiclo:
    executado: bool = True
    verificados: int = 0
    elegiveis: int = 0
    renovados: int = 0
    falhas: int = 0
    pulados: int = 0
    erros: List[str] = field(default_factory=list)
    iniciado_em: Optional[datetime] = None
    finalizado_em: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        dados = asdict(self)
        dados['iniciado_em'] = self.iniciado_em.isoformat() if self.iniciado_em else None
        dados['finalizado_em'] = self.finalizado_em.isoformat() if self.finalizado_em else None
        return dados


@dataclass
class ResultadoRenovacao:
    """Resultado de uma tentativa de renovação de um sistema."""
    sucesso: bool
    sistema_id: int
    username: str
    mensagem: str = ''
    nova_expiracao: Optional[datetime] = None
    correlacao_id: Optional[str] = None
    bloqueado: bool = False
    # Não tentada: reservada por outra execução ou já renovada
    ignorado: bool = False

    def to_dict(self) -> Dict[str, Any]:
        dados = asdict(self)
        dados['nova_expiracao'] = self.nova_expiracao.isoformat() if self.nova_expiracao else None
        return dados


def _iso(valor: Optional[datetime]) -> Optional[str]:
    return valor.isoformat() if valor else None


class RenovacaoAutomaticaService:
    """
    Executa os ciclos de renovação automática.

    Um único ciclo roda por vez: um ciclo disparado enquanto o anterior
    ainda está em execução é ignorado.

    Uso:
        service = get_renovacao_service()
        resultado = service.executar_ciclo()
    """

    def __init__(self, painel: BasePainelAPI, armazenamento: Optional[ArmazenamentoSistemas] = None,
                 ledger: Optional[LedgerAutomacao] = None, logger=None,
                 intervalo_segundos: Optional[int] = None):
        self.painel = painel
        self.armazenamento = armazenamento or ArmazenamentoSistemas()
        self.ledger = ledger or LedgerAutomacao()
        self.log = logger or get_renovacao_logger()
        self.intervalo_segundos = intervalo_segundos or getattr(settings, 'RENOVACAO_INTERVALO_SEGUNDOS', 60)
        self.validade_reserva = timedelta(
            seconds=getattr(settings, 'RENOVACAO_RESERVA_VALIDADE_SEGUNDOS', 600)
        )

        self._lock = threading.Lock()
        self._parar = threading.Event()
        self._estado = EstadoCiclo.OCIOSO
        self._sistema_em_processamento: Optional[str] = None
        self._ultimo_resultado: Optional[ResultadoCiclo] = None

    # ==================== CICLO ====================

    def executar_ciclo(self, agora: Optional[datetime] = None) -> ResultadoCiclo:
        if self._parar.is_set():
            self.log.info("Ciclo não iniciado: parada solicitada")
            return ResultadoCiclo(executado=False)

        if not self._lock.acquire(blocking=False):
            self.log.info(LogTemplates.CICLO_IGNORADO)
            return ResultadoCiclo(executado=False)

        try:
            # O lock acima vale só para este processo; a marca no banco vale para todos
            try:
                reservado = self.armazenamento.reservar_ciclo(self.validade_reserva)
            except LocalStoreError as e:
                self.log.error(f'Erro ao reservar o ciclo de renovação: {e}')
                return ResultadoCiclo(executado=False, erros=[str(e)])
            if not reservado:
                self.log.info(LogTemplates.CICLO_IGNORADO)
                return ResultadoCiclo(executado=False)

            try:
                resultado = self._executar_ciclo(agora or timezone.now())
            finally:
                try:
                    self.armazenamento.liberar_ciclo()
                except LocalStoreError as e:
                    self.log.error(f'Erro ao liberar o ciclo de renovação: {e}')
            self._ultimo_resultado = resultado
            return resultado
        finally:
            self._estado = EstadoCiclo.OCIOSO
            self._sistema_em_processamento = None
            self._lock.release()

    def _executar_ciclo(self, agora: datetime) -> ResultadoCiclo:
        resultado = ResultadoCiclo(iniciado_em=agora)
        self._estado = EstadoCiclo.VERIFICANDO

        try:
            config = self.armazenamento.obter_configuracao()
            sistemas = [s for s in self.armazenamento.listar_sistemas() if s.expiracao is not None]

            elegiveis = []
            for sistema in sistemas:
                resultado.verificados += 1
                try:
                    if self._classificar(sistema, config, agora, resultado):
                        elegiveis.append(sistema)
                except LocalStoreError as e:
                    resultado.falhas += 1
                    resultado.erros.append(f'{sistema.username}: {e}')
                    self.log.error(f'Erro ao verificar {sistema.username}: {e}')

            resultado.elegiveis = len(elegiveis)
            self._estado = EstadoCiclo.PROCESSANDO if elegiveis else EstadoCiclo.SEM_ELEGIVEIS

            for sistema in elegiveis:
                if self._parar.is_set():
                    self.log.info("Parada solicitada: ciclo interrompido entre sistemas")
                    break
                try:
                    renovacao = self._renovar(sistema, agora)
                except PermanentRemoteError:
                    raise
                except Exception as e:
                    resultado.falhas += 1
                    resultado.erros.append(f'{sistema.username}: {e}')
                    self.log.exception(f'Erro inesperado ao renovar {sistema.username}')
                    continue

                if renovacao.ignorado:
                    resultado.pulados += 1
                elif renovacao.sucesso:
                    resultado.renovados += 1
                else:
                    resultado.falhas += 1
                    resultado.erros.append(f'{sistema.username}: {renovacao.mensagem}')

        except Exception as e:
            resultado.falhas += 1
            resultado.erros.append(f'Falha no ciclo: {e}')
            self.log.exception(f'Falha no ciclo de renovação: {e}')
            try:
                self.ledger.registrar(
                    tipo_tarefa=LogTarefaAutomacao.TIPO_CICLO_RENOVACAO,
                    status=LogTarefaAutomacao.STATUS_FAILURE,
                    mensagem='Ciclo de renovação encerrado por falha geral',
                    erro=str(e),
                )
            except LocalStoreError as erro_ledger:
                self.log.error(f'Erro ao registrar falha do ciclo no ledger: {erro_ledger}')

        finally:
            try:
                self.armazenamento.registrar_execucao(agora)
            except LocalStoreError as e:
                self.log.error(f'Erro ao gravar última execução: {e}')

        resultado.finalizado_em = timezone.now()
        self.log.info(
            LogTemplates.CICLO_RESUMO,
            resultado.verificados, resultado.elegiveis, resultado.renovados,
            resultado.falhas, resultado.pulados
        )
        return resultado

    def _classificar(self, sistema: Sistema, config: ConfiguracaoAutomacao, agora: datetime,
                     resultado: ResultadoCiclo) -> bool:
        """
        Registra expirados e pulados no ledger.

        Returns:
            True se o sistema deve ser renovado neste ciclo
        """
        if sistema.esta_expirado(agora):
            if not config.ativo:
                # Automação desligada pelo operador não é falha
                if sistema.renovacao_automatica and self._registrar_pulo(sistema, 'Automação de renovação desativada'):
                    resultado.pulados += 1
                return False
            if self._registrar_expirado(sistema):
                resultado.falhas += 1
                resultado.erros.append(f'{sistema.username}: expirou sem renovação')
            return False

        inicio_janela = sistema.inicio_janela_renovacao(config)
        if agora < inicio_janela:
            return False

        if self._sucesso_registrado(sistema):
            return False

        motivo = self._motivo_pulo(sistema, config, inicio_janela)
        if motivo:
            resultado.pulados += 1
            self._registrar_pulo(sistema, motivo)
            return False

        return True

    def _motivo_pulo(self, sistema: Sistema, config: ConfiguracaoAutomacao,
                     inicio_janela: datetime) -> Optional[str]:
        if not config.ativo:
            return 'Automação de renovação desativada'
        if not sistema.renovacao_automatica:
            return 'Renovação automática desativada no sistema'
        if sistema.renovacao_bloqueada:
            return f'Renovação bloqueada: {sistema.motivo_bloqueio}'
        if sistema.ultima_renovacao_em and sistema.ultima_renovacao_em >= inicio_janela:
            return 'Sistema já renovado dentro da janela atual'
        return None

    def _sucesso_registrado(self, sistema: Sistema) -> bool:
        return self.ledger.buscar_ultimo_para_expiracao(
            sistema.pk, sistema.expiracao, LogTarefaAutomacao.STATUS_SUCCESS,
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO,
        ) is not None

    def _pulo_ou_sucesso_registrado(self, sistema: Sistema) -> bool:
        return self.ledger.buscar_ultimo_para_expiracao(
            sistema.pk, sistema.expiracao,
            (LogTarefaAutomacao.STATUS_SKIPPED, LogTarefaAutomacao.STATUS_SUCCESS),
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO,
        ) is not None

    def _registrar_pulo(self, sistema: Sistema, motivo: str) -> bool:
        """Registra 'skipped' uma única vez por expiração. Retorna True se criou o registro."""
        if self._pulo_ou_sucesso_registrado(sistema):
            return False

        self.ledger.registrar(
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO,
            status=LogTarefaAutomacao.STATUS_SKIPPED,
            mensagem=motivo,
            sistema=sistema,
            correlacao_id=uuid.uuid4(),
        )
        self.log.info(LogTemplates.RENOVACAO_PULADA, sistema.username, motivo)
        return True

    def _registrar_expirado(self, sistema: Sistema) -> bool:
        """
        Registra uma falha 'renovacao_expirada' por expiração perdida.
        Expirações já encerradas com 'success' ou 'skipped' não geram falha.

        Returns:
            True se um novo registro foi criado
        """
        if not sistema.renovacao_automatica:
            return False
        if self._pulo_ou_sucesso_registrado(sistema):
            return False

        existente = self.ledger.buscar_ultimo_para_expiracao(
            sistema.pk, sistema.expiracao, LogTarefaAutomacao.STATUS_FAILURE,
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO_EXPIRADA,
        )
        if existente is not None:
            return False

        self.ledger.registrar(
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO_EXPIRADA,
            status=LogTarefaAutomacao.STATUS_FAILURE,
            mensagem='Sistema expirou sem renovação automática',
            erro=f'Expiração {sistema.expiracao.isoformat()} atingida sem renovação registrada',
            sistema=sistema,
        )
        self.log.warning(f'Sistema {sistema.username} expirou sem renovação ({sistema.expiracao.isoformat()})')
        return True

    # ==================== RENOVAÇÃO ====================

    def _renovar(self, sistema: Sistema, agora: datetime) -> ResultadoRenovacao:
        """
        Reserva o sistema no banco e renova.

        Sem a reserva (outro processo renovando, ou expiração alterada desde a
        leitura) nada é registrado e o painel não é chamado. Com a reserva, o
        ledger é consultado de novo antes da chamada remota.
        """
        expiracao_atual = sistema.expiracao

        def ignorado(mensagem: str) -> ResultadoRenovacao:
            return ResultadoRenovacao(
                sucesso=False, sistema_id=sistema.pk, username=sistema.username,
                mensagem=mensagem, ignorado=True,
            )

        if not self.armazenamento.reservar_renovacao(sistema.pk, expiracao_atual, self.validade_reserva):
            self.log.info(LogTemplates.RENOVACAO_EM_ANDAMENTO, sistema.username)
            return ignorado('Renovação em andamento em outra execução ou expiração alterada')

        try:
            if self._sucesso_registrado(sistema):
                return ignorado('Sistema já renovado para a expiração atual')
            return self._executar_renovacao(sistema, agora)
        finally:
            try:
                self.armazenamento.liberar_renovacao(sistema.pk)
            except LocalStoreError as e:
                self.log.error(f'Erro ao liberar a reserva de {sistema.username}: {e}')

    def _executar_renovacao(self, sistema: Sistema, agora: datetime) -> ResultadoRenovacao:
        """
        Renova um sistema no painel e aplica o resultado localmente.

        Sempre grava 'started' antes da chamada remota e um status final depois.
        Erro de autenticação do painel é registrado e relançado para encerrar o ciclo.
        """
        correlacao_id = uuid.uuid4()
        expiracao_atual = sistema.expiracao
        self._sistema_em_processamento = sistema.username

        def finalizar(status: str, mensagem: str, erro: str = '') -> None:
            self.ledger.registrar(
                tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO,
                status=status,
                mensagem=mensagem,
                erro=erro,
                sistema=sistema,
                expiracao_referencia=expiracao_atual,
                correlacao_id=correlacao_id,
            )

        def falha(mensagem: str, bloqueado: bool = False) -> ResultadoRenovacao:
            self.log.error(LogTemplates.RENOVACAO_FALHA, sistema.username, mensagem)
            return ResultadoRenovacao(
                sucesso=False, sistema_id=sistema.pk, username=sistema.username,
                mensagem=mensagem, correlacao_id=str(correlacao_id), bloqueado=bloqueado,
            )

        self.ledger.registrar(
            tipo_tarefa=LogTarefaAutomacao.TIPO_RENOVACAO,
            status=LogTarefaAutomacao.STATUS_STARTED,
            mensagem='Renovação iniciada',
            sistema=sistema,
            expiracao_referencia=expiracao_atual,
            correlacao_id=correlacao_id,
        )
        self.log.info(
            LogTemplates.RENOVACAO_INICIADA,
            sistema.username, sistema.system_id, _iso(expiracao_atual), correlacao_id
        )

        try:
            remoto = self.painel.renew_account(sistema.system_id)
        except PermanentRemoteError as e:
            if e.code in CODIGOS_AUTENTICACAO:
                finalizar(LogTarefaAutomacao.STATUS_FAILURE, 'Painel recusou a autenticação', str(e))
                self.log.error(LogTemplates.RENOVACAO_FALHA, sistema.username, e)
                raise
            finalizar(LogTarefaAutomacao.STATUS_FAILURE,
                      'Erro permanente do painel; renovação automática bloqueada', str(e))
            self.armazenamento.bloquear_renovacao(sistema.pk, str(e))
            return falha(str(e), bloqueado=True)
        except APIError as e:
            finalizar(LogTarefaAutomacao.STATUS_FAILURE, 'Erro transitório do painel; nova tentativa no próximo ciclo',
                      str(e))
            return falha(str(e))
        except Exception as e:
            finalizar(LogTarefaAutomacao.STATUS_FAILURE, 'Erro inesperado na renovação', str(e))
            self.log.exception(f'Erro inesperado ao renovar {sistema.username}')
            return falha(str(e))

        nova_expiracao = remoto.nova_expiracao
        if expiracao_atual is not None and nova_expiracao < expiracao_atual:
            # O painel pode ter renovado: repetir arriscaria renovação dupla
            mensagem = (f'Painel retornou expiração anterior à atual '
                        f'({nova_expiracao.isoformat()} < {expiracao_atual.isoformat()})')
            finalizar(LogTarefaAutomacao.STATUS_FAILURE, 'Expiração retornada inválida; renovação bloqueada',
                      mensagem)
            self.armazenamento.bloquear_renovacao(sistema.pk, mensagem)
            return falha(mensagem, bloqueado=True)

        mensagem = f'Renovado até {nova_expiracao.isoformat()}'
        erro_local = ''
        try:
            if not self.armazenamento.registrar_renovacao(sistema.pk, nova_expiracao, agora):
                erro_local = 'Sistema removido ou alterado durante a renovação; banco local não atualizado'
        except LocalStoreError as e:
            erro_local = f'Renovado no painel, mas falhou ao gravar localmente: {e}'

        # 'success' é gravado mesmo com falha local: o painel já renovou esta expiração
        finalizar(LogTarefaAutomacao.STATUS_SUCCESS, mensagem, erro_local)
        if erro_local:
            self.log.error(f'{sistema.username}: {erro_local}')

        self.log.info(
            LogTemplates.RENOVACAO_SUCESSO,
            sistema.username, sistema.contador_renovacoes + 1, nova_expiracao.isoformat()
        )
        return ResultadoRenovacao(
            sucesso=True, sistema_id=sistema.pk, username=sistema.username,
            mensagem=mensagem, nova_expiracao=nova_expiracao, correlacao_id=str(correlacao_id),
        )

    def forcar_renovacao(self, sistema_id: int, agora: Optional[datetime] = None) -> ResultadoRenovacao:
        """
        Renovação manual de um sistema, fora da janela, pelo mesmo caminho do ciclo.

        Raises:
            Sistema.DoesNotExist: se o sistema não existir
        """
        agora = agora or timezone.now()
        sistema = self.armazenamento.obter_sistema(sistema_id)
        if sistema is None:
            raise Sistema.DoesNotExist(f'Sistema {sistema_id} não encontrado')

        if sistema.renovacao_bloqueada:
            return ResultadoRenovacao(
                sucesso=False, sistema_id=sistema.pk, username=sistema.username,
                mensagem=f'Renovação bloqueada: {sistema.motivo_bloqueio}', bloqueado=True,
            )

        if not self._lock.acquire(timeout=10):
            return ResultadoRenovacao(
                sucesso=False, sistema_id=sistema.pk, username=sistema.username,
                mensagem='Ciclo de renovação em execução; tente novamente',
            )

        try:
            sistema.refresh_from_db()
            if self._sucesso_registrado(sistema):
                return ResultadoRenovacao(
                    sucesso=False, sistema_id=sistema.pk, username=sistema.username,
                    mensagem='Sistema já renovado para a expiração atual',
                )
            self.log.info(f'Renovação manual solicitada: {sistema.username}')
            try:
                return self._renovar(sistema, agora)
            except PermanentRemoteError as e:
                return ResultadoRenovacao(
                    sucesso=False, sistema_id=sistema.pk, username=sistema.username, mensagem=str(e),
                )
        finally:
            self._sistema_em_processamento = None
            self._lock.release()

    def desbloquear_renovacao(self, sistema_id: int) -> bool:
        """Libera um sistema bloqueado por erro permanente."""
        desbloqueados = self.armazenamento.desbloquear_renovacao([sistema_id])
        if desbloqueados:
            self.log.info(f'Renovação desbloqueada para o sistema {sistema_id}')
        return desbloqueados > 0

    def solicitar_parada(self) -> None:
        """Interrompe o ciclo entre dois sistemas; a renovação em andamento termina normalmente."""
        self._parar.set()
        self.log.info("Parada da renovação automática solicitada")

    # ==================== CONSULTAS ====================

    @property
    def em_execucao(self) -> bool:
        return self._lock.locked()

    def obter_status(self) -> Dict[str, Any]:
        """Status da fila de renovação."""
        config = self.armazenamento.obter_configuracao()
        ultima = config.ultima_execucao_em
        proxima = ultima + timedelta(seconds=self.intervalo_segundos) if ultima else None

        return {
            'estado': self._estado.value,
            'em_execucao': self.em_execucao,
            'sistema_em_processamento': self._sistema_em_processamento,
            'automacao_ativa': config.ativo,
            'antecedencia_renovacao': config.antecedencia_renovacao,
            'ultima_verificacao': _iso(ultima),
            'proxima_verificacao': _iso(proxima),
            'intervalo_segundos': self.intervalo_segundos,
            'parada_solicitada': self._parar.is_set(),
            'ultimo_resultado': self._ultimo_resultado.to_dict() if self._ultimo_resultado else None,
        }

    def obter_renovacoes_agendadas(self, agora: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Sistemas com renovação automática, ordenados pela proximidade da expiração."""
        agora = agora or timezone.now()
        config = self.armazenamento.obter_configuracao()

        agendadas = []
        for sistema in self.armazenamento.listar_com_renovacao_automatica():
            inicio_janela = sistema.inicio_janela_renovacao(config)
            agendadas.append({
                'id': sistema.pk,
                'username': sistema.username,
                'system_id': sistema.system_id,
                'expiracao': _iso(sistema.expiracao),
                'inicio_janela': _iso(inicio_janela),
                'antecedencia_minutos': sistema.antecedencia_efetiva(config),
                'minutos_para_expiracao': int((sistema.expiracao - agora).total_seconds() // 60),
                'minutos_para_janela': max(0, int((inicio_janela - agora).total_seconds() // 60)),
                'na_janela': inicio_janela <= agora < sistema.expiracao,
                'expirado': sistema.esta_expirado(agora),
                'renovacao_bloqueada': sistema.renovacao_bloqueada,
                'contador_renovacoes': sistema.contador_renovacoes,
                'ultima_renovacao_em': _iso(sistema.ultima_renovacao_em),
            })
        return agendadas


# ==================== INSTÂNCIA GLOBAL ====================

_servico: Optional[RenovacaoAutomaticaService] = None
_servico_lock = threading.Lock()


def get_renovacao_service() -> RenovacaoAutomaticaService:
    """Instância única do serviço no processo (criada sob demanda com o painel das settings)."""
    global _servico
    if _servico is None:
        with _servico_lock:
            if _servico is None:
                _servico = RenovacaoAutomaticaService(criar_painel_api())
    return _servico
