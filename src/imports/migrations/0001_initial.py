import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

KIND_CHOICES = [("catalogue", "Catalogue"), ("pricing", "Prix et stock")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("suppliers", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ImportJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("filename", models.CharField(max_length=255, verbose_name="fichier")),
                ("kind", models.CharField(choices=KIND_CHOICES, default="catalogue", max_length=20)),
                (
                    "mode",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("create", "Creation / mise a jour"),
                            ("enrich", "Enrichissement (EAN)"),
                            ("prices", "Prix et stock"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("mapping", models.JSONField(blank=True, default=dict, verbose_name="mapping des colonnes")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("staging", "En preparation"),
                            ("applying", "En cours d'application"),
                            ("done", "Termine"),
                            ("error", "Erreur"),
                            ("rolled_back", "Annule"),
                        ],
                        db_index=True,
                        default="staging",
                        max_length=20,
                    ),
                ),
                ("total_rows", models.PositiveIntegerField(default=0)),
                ("ok_rows", models.PositiveIntegerField(default=0)),
                ("error_rows", models.PositiveIntegerField(default=0)),
                ("created_count", models.PositiveIntegerField(default=0)),
                ("updated_count", models.PositiveIntegerField(default=0)),
                ("rollups_recomputed", models.PositiveIntegerField(default=0)),
                ("details", models.JSONField(blank=True, default=list)),
                ("error_message", models.TextField(blank=True, default="")),
                ("applied_at", models.DateTimeField(blank=True, null=True)),
                ("rolled_back_at", models.DateTimeField(blank=True, null=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="import_jobs_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="import_jobs",
                        to="suppliers.supplier",
                        verbose_name="fournisseur",
                    ),
                ),
            ],
            options={
                "verbose_name": "import fournisseur",
                "verbose_name_plural": "imports fournisseur",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ImportJobRow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("row_index", models.PositiveIntegerField()),
                ("raw_data", models.JSONField(default=dict)),
                ("mapped_data", models.JSONField(default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("staging", "En attente"),
                            ("applied", "Appliquee"),
                            ("invalid", "Invalide"),
                            ("error", "Erreur"),
                            ("rolled_back", "Annulee"),
                        ],
                        db_index=True,
                        default="staging",
                        max_length=20,
                    ),
                ),
                ("error_messages", models.JSONField(blank=True, default=list)),
                ("previous_snapshot", models.JSONField(blank=True, null=True)),
                ("previous_offer_snapshot", models.JSONField(blank=True, null=True)),
                ("product_created", models.BooleanField(default=False)),
                ("offer_created", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rows",
                        to="imports.importjob",
                    ),
                ),
                (
                    "offer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="import_rows",
                        to="suppliers.supplieroffer",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="import_rows",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "ordering": ["job", "row_index"],
                "constraints": [
                    models.UniqueConstraint(fields=("job", "row_index"), name="uniq_import_row_index"),
                ],
                "indexes": [
                    models.Index(fields=["job", "status", "row_index"], name="import_row_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ImportMappingTemplate",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=150, verbose_name="nom")),
                ("kind", models.CharField(choices=KIND_CHOICES, default="catalogue", max_length=20)),
                ("mapping", models.JSONField(default=dict)),
                (
                    "supplier",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="mapping_templates",
                        to="suppliers.supplier",
                        verbose_name="fournisseur",
                    ),
                ),
            ],
            options={
                "verbose_name": "modele de mapping",
                "verbose_name_plural": "modeles de mapping",
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(fields=("supplier", "kind", "name"), name="uniq_mapping_template"),
                    models.UniqueConstraint(
                        condition=models.Q(("supplier__isnull", True)),
                        fields=("kind", "name"),
                        name="uniq_global_mapping_template",
                    ),
                ],
            },
        ),
    ]
