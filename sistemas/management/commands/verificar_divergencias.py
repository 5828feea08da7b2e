"""Management command para listar divergências entre o banco local e o painel."""

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from sistemas.services.divergencias import DetectorDivergencias
from sistemas.services.painel_api import criar_painel_api


class Command(BaseCommand):
    help = "Compara os sistemas locais com o painel sem alterar nada"

    def handle(self, *args, **options):
        timeout = getattr(settings, 'PAINEL_API_TIMEOUT_DIVERGENCIAS', 5)
        relatorio = DetectorDivergencias(criar_painel_api(timeout=timeout)).detectar()

        if not relatorio.api_conectada:
            raise CommandError(f"Painel indisponível: {relatorio.erro}")

        self.stdout.write(f"Sistemas locais: {relatorio.total_local} | no painel: {relatorio.total_remoto}")

        if not relatorio.tem_divergencias:
            self.stdout.write(self.style.SUCCESS("Nenhuma divergência encontrada."))
            return

        self.stdout.write(self.style.WARNING(f"{relatorio.quantidade} divergência(s) encontrada(s):"))
        for username in relatorio.ausentes_localmente:
            self.stdout.write(f"  + {username} (apenas no painel)")
        for username in relatorio.ausentes_remotamente:
            self.stdout.write(f"  - {username} (apenas local)")
        for item in relatorio.divergentes:
            self.stdout.write(f"  ~ {item['username']} ({', '.join(item['campos'])})")
