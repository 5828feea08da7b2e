from django.apps import AppConfig


class SistemasConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "sistemas"
    verbose_name = "Sistemas IPTV"
