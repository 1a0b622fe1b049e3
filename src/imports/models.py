"""Models for staged supplier imports."""
from django.conf import settings
from django.db import models

from core.models import TimeStampedModel

from .fields import ImportKind


class ApplyMode(models.TextChoices):
    CREATE = "create", "Creation / mise a jour"
    ENRICH = "enrich", "Enrichissement (EAN)"
    PRICES = "prices", "Prix et stock"


class ImportJob(TimeStampedModel):
    """One uploaded supplier file and the outcome of applying it."""

    class Status(models.TextChoices):
        STAGING = "staging", "En preparation"
        APPLYING = "applying", "En cours d'application"
        DONE = "done", "Termine"
        ERROR = "error", "Erreur"
        ROLLED_BACK = "rolled_back", "Annule"

    supplier = models.ForeignKey(
        "suppliers.Supplier",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="import_jobs",
        verbose_name="fournisseur",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="import_jobs_created",
    )
    filename = models.CharField("fichier", max_length=255)
    kind = models.CharField(max_length=20, choices=ImportKind.choices, default=ImportKind.CATALOGUE)
    mode = models.CharField(max_length=20, choices=ApplyMode.choices, blank=True, default="")
    mapping = models.JSONField("mapping des colonnes", default=dict, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.STAGING, db_index=True)

    total_rows = models.PositiveIntegerField(default=0)
    ok_rows = models.PositiveIntegerField(default=0)
    error_rows = models.PositiveIntegerField(default=0)
    created_count = models.PositiveIntegerField(default=0)
    updated_count = models.PositiveIntegerField(default=0)
    rollups_recomputed = models.PositiveIntegerField(default=0)
    details = models.JSONField(default=list, blank=True)
    error_message = models.TextField(blank=True, default="")

    applied_at = models.DateTimeField(null=True, blank=True)
    rolled_back_at = models.DateTimeField(null=True, blank=True)

    ROLLBACKABLE_STATUSES = (Status.DONE, Status.ERROR)

    class Meta:
        verbose_name = "import fournisseur"
        verbose_name_plural = "imports fournisseur"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.filename} [{self.status}]"


class ImportJobRow(models.Model):
    """One staged line of an import job, and its undo data once applied."""

    class Status(models.TextChoices):
        STAGING = "staging", "En attente"
        APPLIED = "applied", "Appliquee"
        INVALID = "invalid", "Invalide"
        ERROR = "error", "Erreur"
        ROLLED_BACK = "rolled_back", "Annulee"

    TERMINAL_STATUSES = (Status.APPLIED, Status.INVALID, Status.ERROR, Status.ROLLED_BACK)

    job = models.ForeignKey(ImportJob, on_delete=models.CASCADE, related_name="rows")
    row_index = models.PositiveIntegerField()
    raw_data = models.JSONField(default=dict)
    mapped_data = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.STAGING, db_index=True)
    error_messages = models.JSONField(default=list, blank=True)
    product = models.ForeignKey(
        "catalog.Product",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="import_rows",
    )
    previous_snapshot = models.JSONField(null=True, blank=True)
    offer = models.ForeignKey(
        "suppliers.SupplierOffer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="import_rows",
    )
    previous_offer_snapshot = models.JSONField(null=True, blank=True)
    product_created = models.BooleanField(default=False)
    offer_created = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["job", "row_index"]
        constraints = [
            models.UniqueConstraint(fields=["job", "row_index"], name="uniq_import_row_index"),
        ]
        indexes = [
            models.Index(fields=["job", "status", "row_index"], name="import_row_status_idx"),
        ]

    def __str__(self):
        return f"{self.job_id}#{self.row_index} [{self.status}]"


class ImportMappingTemplate(TimeStampedModel):
    """Saved column mapping, reusable for the next file of the same supplier."""

    supplier = models.ForeignKey(
        "suppliers.Supplier",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="mapping_templates",
        verbose_name="fournisseur",
    )
    name = models.CharField("nom", max_length=150)
    kind = models.CharField(max_length=20, choices=ImportKind.choices, default=ImportKind.CATALOGUE)
    mapping = models.JSONField(default=dict)

    class Meta:
        verbose_name = "modele de mapping"
        verbose_name_plural = "modeles de mapping"
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["supplier", "kind", "name"],
                name="uniq_mapping_template",
            ),
            models.UniqueConstraint(
                fields=["kind", "name"],
                condition=models.Q(supplier__isnull=True),
                name="uniq_global_mapping_template",
            ),
        ]

    def __str__(self):
        return self.name
