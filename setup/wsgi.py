import os
import sys
from django.core.wsgi import get_wsgi_application
from threading import Thread, Lock

# Configuração do ambiente Django
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "setup.settings")

application = get_wsgi_application()

from django.conf import settings

# Definindo um lock para evitar execução simultânea de threads no mesmo processo
lock = Lock()

# Função para inicializar o scheduler de renovação
def inicializar_scripts():
    try:
        with lock:
            print("[WSGI] INICIANDO SCRIPT 'agendamentos.py'...")
            os.system(f'{sys.executable} scripts/agendamentos.py')

    except Exception as e:
        print(f"[WSGI] Erro ao iniciar scripts: {e}", file=sys.stderr)

# O lock file do scheduler garante uma única instância mesmo com vários workers
if settings.INICIAR_AGENDADOR_NO_WSGI:
    inicializar_scripts_thread = Thread(target=inicializar_scripts, daemon=True)
    inicializar_scripts_thread.start()
