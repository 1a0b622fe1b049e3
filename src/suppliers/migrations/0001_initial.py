import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "code",
                    models.CharField(
                        help_text="Identifiant court en majuscules (ALKOR, COMLANDI, SOFT...).",
                        max_length=30,
                        unique=True,
                        verbose_name="code",
                    ),
                ),
                ("name", models.CharField(max_length=255, verbose_name="nom")),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("phone", models.CharField(blank=True, default="", max_length=30)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "allows_multiple_references",
                    models.BooleanField(
                        default=False,
                        help_text="Autorise plusieurs offres du fournisseur pour un meme produit.",
                        verbose_name="references multiples",
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["code"],
            },
        ),
        migrations.CreateModel(
            name="SupplierOffer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "supplier_reference",
                    models.CharField(blank=True, default="", max_length=100, verbose_name="reference fournisseur"),
                ),
                (
                    "purchase_price_ht",
                    models.DecimalField(
                        blank=True, decimal_places=4, max_digits=12, null=True, verbose_name="prix d'achat HT"
                    ),
                ),
                (
                    "pvp_ttc",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=12, null=True, verbose_name="PVP conseille TTC"
                    ),
                ),
                (
                    "vat_rate",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, verbose_name="taux TVA"),
                ),
                (
                    "tax_breakdown",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text='Code taxe vers montant, ex. {"d3e": "0.02", "cop": "0.01"}.',
                        verbose_name="taxes annexes",
                    ),
                ),
                ("stock_qty", models.PositiveIntegerField(default=0, verbose_name="stock")),
                (
                    "min_qty",
                    models.PositiveIntegerField(
                        default=1,
                        validators=[django.core.validators.MinValueValidator(1)],
                        verbose_name="quantite minimale",
                    ),
                ),
                (
                    "delivery_delay_days",
                    models.PositiveIntegerField(blank=True, null=True, verbose_name="delai de livraison (jours)"),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True, verbose_name="active")),
                ("is_preferred", models.BooleanField(default=False, verbose_name="preferee")),
                ("priority_rank", models.IntegerField(default=0, verbose_name="rang de priorite")),
                (
                    "last_seen_at",
                    models.DateTimeField(blank=True, db_index=True, null=True, verbose_name="vue pour la derniere fois"),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="offers",
                        to="catalog.product",
                        verbose_name="produit",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="offers",
                        to="suppliers.supplier",
                        verbose_name="fournisseur",
                    ),
                ),
            ],
            options={
                "verbose_name": "offre fournisseur",
                "verbose_name_plural": "offres fournisseur",
                "ordering": ["priority_rank", "-updated_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("supplier_reference", ""), _negated=True),
                        fields=("supplier", "supplier_reference"),
                        name="uniq_offer_supplier_reference",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("min_qty__gte", 1)),
                        name="offer_min_qty_positive",
                    ),
                ],
                "indexes": [
                    models.Index(fields=["product", "supplier"], name="offer_product_supplier_idx"),
                ],
            },
        ),
    ]
