"""Recompute product price and availability rollups."""
from django.core.management.base import BaseCommand, CommandError

from catalog.models import Product
from catalog.rollup import process_rollup_queue, recompute_all_rollups, recompute_product_rollup


class Command(BaseCommand):
    help = "Recalcule le prix public et la disponibilite des produits a partir des offres."

    def add_arguments(self, parser):
        parser.add_argument("--product", help="Identifiant d'un seul produit a recalculer.")
        parser.add_argument(
            "--drain-only",
            action="store_true",
            help="Traiter uniquement la file des recalculs en attente.",
        )
        parser.add_argument("--batch-size", type=int, default=None)

    def handle(self, *args, **options):
        if options["product"]:
            try:
                values = recompute_product_rollup(options["product"])
            except Product.DoesNotExist:
                raise CommandError(f"Produit introuvable : {options['product']}")
            self.stdout.write(self.style.SUCCESS(f"Produit recalcule : {values.as_dict()}"))
            return

        if options["drain_only"]:
            result = process_rollup_queue()
        else:
            result = recompute_all_rollups(batch_size=options["batch_size"])

        for product_id, error in result.failures:
            self.stderr.write(f"  {product_id}: {error}")
        style = self.style.WARNING if result.failed else self.style.SUCCESS
        self.stdout.write(style(f"{result.recomputed} produit(s) recalcule(s), {result.failed} echec(s)."))
