"""
Configuração centralizada de logging para a automação de sistemas.

Este módulo fornece:
- Formatadores padronizados
- Handlers com rotação automática
- Factory de loggers configurados
- Templates de mensagens comuns

Uso:
    from sistemas.services.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Mensagem informativa")
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from django.conf import settings


# ==================== CONSTANTES ====================

# Formatos de log
FORMATO_CONSOLE = "[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s"
FORMATO_ARQUIVO = "[%(asctime)s] [%(levelname)-8s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
FORMATO_ARQUIVO_SIMPLES = "[%(asctime)s] [%(levelname)-8s] %(message)s"
FORMATO_TIMESTAMP = "%d-%m-%Y %H:%M:%S"

# Configurações de rotação
MAX_BYTES_PER_FILE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Diretório base de logs
BASE_LOG_DIR = Path(getattr(settings, "LOGS_DIR", "logs"))


# ==================== FORMATADORES ====================

def get_console_formatter() -> logging.Formatter:
    """Retorna formatador para logs de console."""
    return logging.Formatter(FORMATO_CONSOLE, FORMATO_TIMESTAMP)


def get_file_formatter(detailed: bool = True) -> logging.Formatter:
    """
    Retorna formatador para logs de arquivo.

    Args:
        detailed: Se True, inclui nome da função e linha. Se False, formato simples.
    """
    formato = FORMATO_ARQUIVO if detailed else FORMATO_ARQUIVO_SIMPLES
    return logging.Formatter(formato, FORMATO_TIMESTAMP)


# ==================== HANDLERS ====================

def get_rotating_file_handler(
    log_path: str | Path,
    max_bytes: int = MAX_BYTES_PER_FILE,
    backup_count: int = BACKUP_COUNT,
    level: int = logging.DEBUG,
    detailed: bool = True,
) -> RotatingFileHandler:
    """
    Cria um RotatingFileHandler configurado, criando o diretório se necessário.
    """
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(get_file_formatter(detailed=detailed))

    return handler


def get_console_handler(level: int = logging.INFO) -> logging.StreamHandler:
    """Cria um StreamHandler para console configurado."""
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(get_console_formatter())

    return handler


# ==================== FACTORY DE LOGGERS ====================

def get_logger(
    name: str,
    log_file: Optional[str | Path] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    propagate: bool = False,
) -> logging.Logger:
    """
    Cria ou retorna um logger configurado.

    Args:
        name: Nome do logger (geralmente __name__)
        log_file: Caminho do arquivo de log (opcional)
        console_level: Nível mínimo para console (padrão: INFO)
        file_level: Nível mínimo para arquivo (padrão: DEBUG)
        propagate: Se True, propaga para logger pai (padrão: False)

    Returns:
        Logger configurado

    Exemplo:
        >>> logger = get_logger(__name__, log_file="logs/Sistemas/meu_modulo.log")
        >>> logger.info("Operação concluída")
    """
    logger = logging.getLogger(name)

    # Evita duplicação de handlers se logger já existe
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = propagate

    logger.addHandler(get_console_handler(level=console_level))

    if log_file:
        logger.addHandler(
            get_rotating_file_handler(
                log_path=log_file,
                level=file_level,
            )
        )

    return logger


def get_scheduler_logger() -> logging.Logger:
    """
    Retorna logger específico para o processo do scheduler.

    Configuração:
    - Console: INFO e superior
    - Arquivo: DEBUG e superior com rotação
    """
    return get_logger(
        name="Scheduler",
        log_file=BASE_LOG_DIR / "Scheduler" / "scheduler.log",
        console_level=logging.INFO,
        file_level=logging.DEBUG,
    )


def get_sincronizacao_logger() -> logging.Logger:
    """Retorna logger da reconciliação e da detecção de divergências."""
    return get_logger(
        name="Sincronizacao",
        log_file=BASE_LOG_DIR / "Sistemas" / "sincronizacao.log",
        console_level=logging.INFO,
        file_level=logging.DEBUG,
    )


def get_renovacao_logger() -> logging.Logger:
    """
    Retorna logger específico para a renovação automática.

    Exemplo:
        >>> logger = get_renovacao_logger()
        >>> logger.info(LogTemplates.RENOVACAO_SUCESSO, "usuario01", 1, "2026-01-01T00:00:00")
    """
    return get_logger(
        name="RenovacaoAutomatica",
        log_file=BASE_LOG_DIR / "Sistemas" / "renovacao.log",
        console_level=logging.INFO,
        file_level=logging.DEBUG,
    )


def get_painel_logger() -> logging.Logger:
    """
    Retorna logger das requisições ao painel remoto.

    Console apenas para WARNING e superior, requisições ficam no arquivo.
    """
    return get_logger(
        name="PainelAPI",
        log_file=BASE_LOG_DIR / "Sistemas" / "painel_api.log",
        console_level=logging.WARNING,
        file_level=logging.DEBUG,
    )


# ==================== TEMPLATES DE MENSAGENS ====================

class LogTemplates:
    """Templates padronizados para mensagens de log comuns."""

    # Scheduler
    JOB_INICIADO = "Job iniciado | nome=%s"
    JOB_FINALIZADO = "Job finalizado | nome=%s duracao=%.2fs"
    JOB_ERRO = "Erro no job | nome=%s erro=%s"

    # Renovação
    CICLO_IGNORADO = "Ciclo ignorado (ciclo anterior ainda em execução)"
    RENOVACAO_EM_ANDAMENTO = "Renovação ignorada | sistema=%s já reservado por outra execução"
    CICLO_RESUMO = "Ciclo concluído | verificados=%d elegiveis=%d renovados=%d falhas=%d pulados=%d"
    RENOVACAO_INICIADA = "Renovação iniciada | usuario=%s sistema=%s expiracao=%s correlacao=%s"
    RENOVACAO_SUCESSO = "Renovação concluída | usuario=%s renovacoes=%d nova_expiracao=%s"
    RENOVACAO_FALHA = "Falha na renovação | usuario=%s erro=%s"
    RENOVACAO_PULADA = "Renovação pulada | usuario=%s motivo=%s"

    # Sincronização
    SINCRONIZACAO_RESUMO = "Sincronização concluída | criados=%d atualizados=%d removidos=%d erros=%d"
    SINCRONIZACAO_ABORTADA = "Sincronização abortada | erro=%s"

    # API
    API_REQUEST = "Requisição API | endpoint=%s method=%s"
    API_RESPONSE = "Resposta API | endpoint=%s status=%d"
    API_ERROR = "Erro na API | endpoint=%s status=%s erro=%s"


# ==================== CONFIGURAÇÃO GLOBAL ====================

def configure_root_logger(level: int = logging.WARNING) -> None:
    """
    Configura o logger raiz para evitar logs duplicados.

    Args:
        level: Nível mínimo para o logger raiz (padrão: WARNING)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(get_console_formatter())
    root_logger.addHandler(console)
