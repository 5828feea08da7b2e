"""
Django settings for setup project.

Valores de implantação e segredos vêm de variáveis de ambiente (arquivo .env
na raiz do projeto, carregado com python-dotenv).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def env_bool(nome, padrao=False):
    valor = os.getenv(nome)
    if valor is None:
        return padrao
    return valor.strip().lower() in ("1", "true", "yes", "sim")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-dev-key-troque-em-producao")

DEBUG = env_bool("DJANGO_DEBUG", False)

ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "sistemas",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "setup.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "setup.wsgi.application"


# Database

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DATABASE_PATH", str(BASE_DIR / "db.sqlite3")),
        "OPTIONS": {
            "timeout": 20,
        },
    }
}


# Autenticação

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LOGIN_URL = "/painel-configs/login/"


# Internationalization

LANGUAGE_CODE = "pt-br"

TIME_ZONE = "America/Sao_Paulo"

USE_I18N = True

USE_TZ = True


# Static files

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Logs

LOGS_DIR = os.getenv("LOGS_DIR", str(BASE_DIR / "logs"))


# Painel remoto

PAINEL_API_URL = os.getenv("PAINEL_API_URL", "")
PAINEL_API_KEY = os.getenv("PAINEL_API_KEY", "")
PAINEL_API_TIMEOUT = float(os.getenv("PAINEL_API_TIMEOUT", "10"))
PAINEL_API_TIMEOUT_DIVERGENCIAS = float(os.getenv("PAINEL_API_TIMEOUT_DIVERGENCIAS", "5"))


# Renovação automática

RENOVACAO_INTERVALO_SEGUNDOS = int(os.getenv("RENOVACAO_INTERVALO_SEGUNDOS", "60"))
RENOVACAO_ANTECEDENCIA_MAXIMA = int(os.getenv("RENOVACAO_ANTECEDENCIA_MAXIMA", "10080"))  # 7 dias
RENOVACAO_RESERVA_VALIDADE_SEGUNDOS = int(os.getenv("RENOVACAO_RESERVA_VALIDADE_SEGUNDOS", "600"))
INICIAR_AGENDADOR_NO_WSGI = env_bool("INICIAR_AGENDADOR_NO_WSGI", False)
