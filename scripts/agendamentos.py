import os, sys, time, threading, fcntl, signal, atexit
import schedule
import socket

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'setup.settings')
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import django
django.setup()

from django.conf import settings

from sistemas.services.logging_config import LogTemplates, configure_root_logger, get_scheduler_logger
from sistemas.services.renovacao_automatica import get_renovacao_service

################################################
##### PROTEÇÃO CONTRA MÚLTIPLAS INSTÂNCIAS #####
################################################

LOCK_FILE = "/tmp/scheduler_renovacao_sistemas.lock"
lock_file_handle = None

def acquire_scheduler_lock():
    """
    Adquire um lock de sistema para garantir que apenas uma instância do scheduler execute.
    Retorna o file handle se bem-sucedido, ou None se já existe outra instância.
    """
    global lock_file_handle
    try:
        lock_file_handle = open(LOCK_FILE, 'w')
        # Tenta adquirir lock exclusivo não-bloqueante
        fcntl.flock(lock_file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        # Escreve PID no arquivo para debug
        lock_file_handle.write(f"{os.getpid()}\n")
        lock_file_handle.flush()
        return lock_file_handle
    except OSError:
        # Outra instância já está rodando
        return None

def release_scheduler_lock():
    """Libera o lock e remove o arquivo."""
    global lock_file_handle
    if lock_file_handle:
        try:
            fcntl.flock(lock_file_handle.fileno(), fcntl.LOCK_UN)
            lock_file_handle.close()
            if os.path.exists(LOCK_FILE):
                os.remove(LOCK_FILE)
        except OSError as e:
            logger.warning(f"Erro ao liberar lock: {e}")
        lock_file_handle = None

################################################
##### CONFIGURAÇÃO DO AGENDADOR DE TAREFAS #####
################################################

configure_root_logger()
logger = get_scheduler_logger()

INTERVALO_SEGUNDOS = getattr(settings, "RENOVACAO_INTERVALO_SEGUNDOS", 60)
TIMEOUT_PARADA_SEGUNDOS = 120

parada_solicitada = threading.Event()
threads_ativas = []
threads_lock = threading.Lock()

def signal_handler(signum, frame):
    """
    Handler para sinais de terminação.
    Interrompe o ciclo entre sistemas e deixa a renovação em andamento terminar.
    """
    logger.info(f"Recebido sinal {signum}. Encerrando graciosamente...")
    parada_solicitada.set()
    get_renovacao_service().solicitar_parada()

# Registra handlers de sinal e cleanup
signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)
atexit.register(release_scheduler_lock)

# --------------- Helpers ---------------
def log_jobs_state():
    """Loga o estado atual dos jobs agendados."""
    for j in schedule.get_jobs():
        logger.info(f"[JOB] tag={j.tags} next_run={j.next_run} interval={j.interval} unit={j.unit}")

def run_threaded_sync(job_func, *args, **kwargs):
    """Executa o job em uma thread separada, com logs de início/fim."""
    if parada_solicitada.is_set():
        return

    def _target():
        inicio = time.monotonic()
        try:
            logger.debug(LogTemplates.JOB_INICIADO, job_func.__name__)
            job_func(*args, **kwargs)
            logger.debug(LogTemplates.JOB_FINALIZADO, job_func.__name__, time.monotonic() - inicio)
        except Exception as e:
            logger.exception(LogTemplates.JOB_ERRO, job_func.__name__, e)

    t = threading.Thread(target=_target, name=f"job-{job_func.__name__}")
    with threads_lock:
        threads_ativas[:] = [th for th in threads_ativas if th.is_alive()]
        threads_ativas.append(t)
    t.start()

def aguardar_jobs_em_execucao(timeout):
    """Aguarda os jobs em andamento gravarem seus registros finais no ledger."""
    with threads_lock:
        pendentes = [th for th in threads_ativas if th.is_alive()]
    for th in pendentes:
        logger.info(f"Aguardando job em execução: {th.name}")
        th.join(timeout)
        if th.is_alive():
            logger.warning(f"Job {th.name} não terminou em {timeout}s")

def ciclo_renovacao():
    """Um ciclo da renovação automática. Ciclos sobrepostos são ignorados pelo serviço."""
    get_renovacao_service().executar_ciclo()

# --------------- Agendamentos ---------------
schedule.every(INTERVALO_SEGUNDOS).seconds.do(
    run_threaded_sync, ciclo_renovacao
).tag("renovacao_automatica")

# --------------- Verificação de Lock de Instância Única ---------------
if __name__ == "__main__":
    if not acquire_scheduler_lock():
        logger.critical("BLOQUEADO: Outra instância do scheduler já está em execução.")
        logger.info("Verifique o arquivo %s para detalhes.", LOCK_FILE)
        sys.exit(0)

    INSTANCE_ID = f"{socket.gethostname()}-{os.getpid()}"
    logger.info("=" * 60)
    logger.info("SCHEDULER DE RENOVAÇÃO INICIADO - Instância única")
    logger.info(f"ID: {INSTANCE_ID}")
    logger.info(f"Intervalo: {INTERVALO_SEGUNDOS}s")
    logger.info("=" * 60)
    log_jobs_state()

    # Loop principal usando idle_seconds()
    while not parada_solicitada.is_set():
        try:
            schedule.run_pending()
            # Loga heartbeat a cada ~5min
            if int(time.time()) % 300 == 0:
                logger.info("Heartbeat OK")
                log_jobs_state()
            # dorme exatamente o necessário até o próximo job
            sleep_for = schedule.idle_seconds()
            if sleep_for is None or sleep_for < 0:
                sleep_for = 1
            parada_solicitada.wait(min(sleep_for, 5))  # nunca dorme mais que 5s
        except Exception as e:
            logger.exception(f"Erro no loop do scheduler: {e}")

    schedule.clear()
    aguardar_jobs_em_execucao(TIMEOUT_PARADA_SEGUNDOS)
    release_scheduler_lock()
    logger.info("Scheduler encerrado.")
