"""Management command para executar um ciclo de renovação automática manualmente."""

from django.core.management.base import BaseCommand, CommandError

from sistemas.models import Sistema
from sistemas.services.painel_api import criar_painel_api
from sistemas.services.renovacao_automatica import RenovacaoAutomaticaService


class Command(BaseCommand):
    help = "Executa um ciclo de renovação automática (ou renova um sistema com --forcar)"

    def add_arguments(self, parser):
        parser.add_argument(
            '--forcar',
            type=int,
            metavar='SISTEMA_ID',
            help='Renova imediatamente o sistema informado, fora da janela'
        )

    def handle(self, *args, **options):
        service = RenovacaoAutomaticaService(criar_painel_api())

        if options['forcar']:
            try:
                resultado = service.forcar_renovacao(options['forcar'])
            except Sistema.DoesNotExist as e:
                raise CommandError(str(e))

            if not resultado.sucesso:
                raise CommandError(f"{resultado.username}: {resultado.mensagem}")
            self.stdout.write(self.style.SUCCESS(f"✓ {resultado.username}: {resultado.mensagem}"))
            return

        resultado = service.executar_ciclo()
        if not resultado.executado:
            self.stdout.write(self.style.WARNING(
                "Ciclo não executado: outro ciclo de renovação está em andamento."
            ))
            for erro in resultado.erros:
                self.stdout.write(self.style.ERROR(f"  - {erro}"))
            return

        self.stdout.write(
            f"Verificados: {resultado.verificados} | elegíveis: {resultado.elegiveis} | "
            f"renovados: {resultado.renovados} | falhas: {resultado.falhas} | pulados: {resultado.pulados}"
        )
        for erro in resultado.erros:
            self.stdout.write(self.style.ERROR(f"  - {erro}"))

        if resultado.falhas:
            self.stdout.write(self.style.WARNING("Ciclo concluído com falhas."))
        else:
            self.stdout.write(self.style.SUCCESS("✓ Ciclo concluído."))
