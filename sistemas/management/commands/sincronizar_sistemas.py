"""Management command para sincronizar os sistemas locais com o painel."""

from django.core.management.base import BaseCommand, CommandError

from sistemas.services.divergencias import DetectorDivergencias
from sistemas.services.painel_api import criar_painel_api
from sistemas.services.sincronizacao import SincronizadorSistemas


class Command(BaseCommand):
    help = "Sincroniza os sistemas locais com o painel remoto (cria, atualiza e remove localmente)"

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Mostra as divergências sem alterar o banco'
        )

    def handle(self, *args, **options):
        painel = criar_painel_api()

        if options['dry_run']:
            relatorio = DetectorDivergencias(painel).detectar()
            if not relatorio.api_conectada:
                raise CommandError(f"Painel indisponível: {relatorio.erro}")
            self.stdout.write(self.style.WARNING("[DRY-RUN] Nenhuma alteração será feita"))
            self.stdout.write(f"  Seriam criados: {len(relatorio.ausentes_localmente)}")
            self.stdout.write(f"  Seriam atualizados: {len(relatorio.divergentes)}")
            self.stdout.write(f"  Seriam removidos: {len(relatorio.ausentes_remotamente)}")
            return

        resultado = SincronizadorSistemas(painel).reconciliar()
        if resultado.abortado:
            raise CommandError(resultado.erros[0])

        self.stdout.write(
            self.style.SUCCESS(
                f"✓ Sincronização concluída: {resultado.criados} criados, "
                f"{resultado.atualizados} atualizados, {resultado.removidos} removidos"
            )
        )
        for erro in resultado.erros:
            self.stdout.write(self.style.ERROR(f"  - {erro}"))
