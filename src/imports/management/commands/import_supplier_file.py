"""Import a supplier catalogue or price file from disk."""
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from imports.exceptions import ImportPipelineError
from imports.fields import ImportKind
from imports.models import ApplyMode, ImportMappingTemplate
from imports.services import run_supplier_file_import
from suppliers.models import Supplier


class Command(BaseCommand):
    help = "Importe un fichier fournisseur (xlsx, xls ou csv) et l'applique au catalogue."

    def add_arguments(self, parser):
        parser.add_argument("path", help="Chemin du fichier a importer.")
        parser.add_argument("--supplier", help="Code du fournisseur (ALKOR, COMLANDI...).")
        parser.add_argument(
            "--kind",
            choices=ImportKind.values,
            default=ImportKind.CATALOGUE,
        )
        parser.add_argument(
            "--mode",
            choices=ApplyMode.values,
            help="Mode d'application. Sans mode, les lignes sont seulement mises en attente.",
        )
        parser.add_argument("--template", help="Nom du modele de mapping a utiliser.")

    def handle(self, *args, **options):
        path = Path(options["path"])
        if not path.is_file():
            raise CommandError(f"Fichier introuvable : {path}")

        supplier = None
        if options["supplier"]:
            supplier = Supplier.objects.filter(code=options["supplier"].strip().upper()).first()
            if supplier is None:
                raise CommandError(f"Fournisseur inconnu : {options['supplier']}")

        template = None
        if options["template"]:
            templates = ImportMappingTemplate.objects.filter(name=options["template"], kind=options["kind"])
            if supplier is not None:
                template = templates.filter(supplier=supplier).first()
            template = template or templates.filter(supplier__isnull=True).first()
            if template is None:
                raise CommandError(f"Modele de mapping introuvable : {options['template']}")

        try:
            with path.open("rb") as fileobj:
                result = run_supplier_file_import(
                    fileobj,
                    filename=path.name,
                    supplier=supplier,
                    kind=options["kind"],
                    template=template,
                    apply_mode=options["mode"],
                )
        except ImportPipelineError as exc:
            raise CommandError(str(exc))

        job = result.job
        self.stdout.write(f"Import {job.pk} : {result.staged} ligne(s) en attente.")
        for key, column in result.mapping.mapping.items():
            self.stdout.write(f"  {key:<22} <- {column}")
        if result.mapping.missing_required:
            self.stderr.write(
                self.style.WARNING(f"Champs requis non mappes : {', '.join(result.mapping.missing_required)}")
            )

        if result.report is None:
            return
        report = result.report
        for line in report.details:
            self.stderr.write(f"  {line}")
        style = self.style.WARNING if report.errors else self.style.SUCCESS
        self.stdout.write(
            style(
                f"{report.created} cree(s), {report.updated} mis a jour, {report.errors} erreur(s), "
                f"{report.rollups_recomputed} prix recalcule(s)."
            )
        )
