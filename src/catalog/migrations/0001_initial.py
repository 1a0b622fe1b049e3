import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=500, verbose_name="nom")),
                ("ean", models.CharField(blank=True, db_index=True, default="", max_length=13, verbose_name="EAN")),
                ("sku", models.CharField(blank=True, db_index=True, default="", max_length=100, verbose_name="SKU interne")),
                (
                    "manufacturer_ref",
                    models.CharField(
                        blank=True, db_index=True, default="", max_length=100, verbose_name="reference fabricant"
                    ),
                ),
                ("description", models.TextField(blank=True, default="", verbose_name="description")),
                (
                    "short_description",
                    models.CharField(blank=True, default="", max_length=500, verbose_name="description courte"),
                ),
                ("brand", models.CharField(blank=True, default="", max_length=255, verbose_name="marque")),
                ("family", models.CharField(blank=True, db_index=True, default="", max_length=255, verbose_name="famille")),
                ("sub_family", models.CharField(blank=True, default="", max_length=255, verbose_name="sous-famille")),
                ("image_url", models.URLField(blank=True, default="", max_length=1000, verbose_name="image")),
                (
                    "weight_kg",
                    models.DecimalField(blank=True, decimal_places=3, max_digits=10, null=True, verbose_name="poids (kg)"),
                ),
                (
                    "vat_rate",
                    models.DecimalField(decimal_places=2, default=Decimal("20.00"), max_digits=5, verbose_name="taux TVA"),
                ),
                ("is_eco", models.BooleanField(default=False, verbose_name="eco-responsable")),
                (
                    "attributes",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Colonnes fournisseur sans champ dedie (nomenclature, garantie...).",
                        verbose_name="attributs fournisseur",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="actif")),
                (
                    "cost_price_ht",
                    models.DecimalField(
                        decimal_places=4, default=Decimal("0.0000"), max_digits=12, verbose_name="prix de revient HT"
                    ),
                ),
                (
                    "public_price_ttc",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=12, null=True, verbose_name="prix public TTC"
                    ),
                ),
                (
                    "public_price_source",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("PVP_ALKOR", "PVP Alkor"),
                            ("PVP_COMLANDI", "PVP Comlandi"),
                            ("PVP_SOFT", "PVP Soft"),
                            ("COEF", "Coefficient"),
                        ],
                        max_length=30,
                        null=True,
                        verbose_name="source du prix public",
                    ),
                ),
                ("available_qty_total", models.PositiveIntegerField(default=0, verbose_name="stock mutualise")),
                ("is_available", models.BooleanField(db_index=True, default=False, verbose_name="disponible")),
                ("rollup_updated_at", models.DateTimeField(blank=True, null=True, verbose_name="rollup recalcule le")),
            ],
            options={
                "verbose_name": "produit",
                "verbose_name_plural": "produits",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="PricingCoefficient",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("family", models.CharField(max_length=255, verbose_name="famille")),
                ("sub_family", models.CharField(blank=True, max_length=255, null=True, verbose_name="sous-famille")),
                (
                    "multiplier",
                    models.DecimalField(
                        decimal_places=4,
                        max_digits=8,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.0001"))],
                        verbose_name="coefficient",
                    ),
                ),
            ],
            options={
                "verbose_name": "coefficient de prix",
                "verbose_name_plural": "coefficients de prix",
                "ordering": ["family", "sub_family"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("family", "sub_family"),
                        name="uniq_coefficient_family_subfamily",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("sub_family__isnull", True)),
                        fields=("family",),
                        name="uniq_coefficient_family_default",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("multiplier__gt", 0)),
                        name="coefficient_multiplier_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RollupRequest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reason", models.CharField(blank=True, default="", max_length=100, verbose_name="motif")),
                ("attempts", models.PositiveIntegerField(default=0, verbose_name="tentatives")),
                ("last_error", models.TextField(blank=True, default="", verbose_name="derniere erreur")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "product",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rollup_request",
                        to="catalog.product",
                        verbose_name="produit",
                    ),
                ),
            ],
            options={
                "verbose_name": "recalcul en attente",
                "verbose_name_plural": "recalculs en attente",
                "ordering": ["created_at"],
            },
        ),
    ]
