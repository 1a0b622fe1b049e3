"""Models for the catalog app (products, pricing coefficients, rollup queue)."""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from core.models import TimeStampedModel


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------

class Product(TimeStampedModel):
    """Canonical sellable product.

    Descriptive fields are written by catalogue imports. The ``public_price_*``,
    ``available_qty_total`` and ``is_available`` fields are derived from the
    product's supplier offers by :mod:`catalog.rollup` and must not be edited
    by hand.
    """

    class PriceSource(models.TextChoices):
        PVP_ALKOR = "PVP_ALKOR", "PVP Alkor"
        PVP_COMLANDI = "PVP_COMLANDI", "PVP Comlandi"
        PVP_SOFT = "PVP_SOFT", "PVP Soft"
        COEF = "COEF", "Coefficient"

    name = models.CharField("nom", max_length=500)
    ean = models.CharField("EAN", max_length=13, blank=True, default="", db_index=True)
    sku = models.CharField(
        "SKU interne",
        max_length=100,
        blank=True,
        default="",
        db_index=True,
    )
    manufacturer_ref = models.CharField(
        "reference fabricant",
        max_length=100,
        blank=True,
        default="",
        db_index=True,
    )
    description = models.TextField("description", blank=True, default="")
    short_description = models.CharField("description courte", max_length=500, blank=True, default="")
    brand = models.CharField("marque", max_length=255, blank=True, default="")
    family = models.CharField("famille", max_length=255, blank=True, default="", db_index=True)
    sub_family = models.CharField("sous-famille", max_length=255, blank=True, default="")
    image_url = models.URLField("image", max_length=1000, blank=True, default="")
    weight_kg = models.DecimalField(
        "poids (kg)",
        max_digits=10,
        decimal_places=3,
        null=True,
        blank=True,
    )
    vat_rate = models.DecimalField(
        "taux TVA",
        max_digits=5,
        decimal_places=2,
        default=Decimal("20.00"),
    )
    is_eco = models.BooleanField("eco-responsable", default=False)
    attributes = models.JSONField(
        "attributs fournisseur",
        default=dict,
        blank=True,
        help_text="Colonnes fournisseur sans champ dedie (nomenclature, garantie...).",
    )
    is_active = models.BooleanField("actif", default=True)

    # Rollup-derived ---------------------------------------------------
    cost_price_ht = models.DecimalField(
        "prix de revient HT",
        max_digits=12,
        decimal_places=4,
        default=Decimal("0.0000"),
    )
    public_price_ttc = models.DecimalField(
        "prix public TTC",
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )
    public_price_source = models.CharField(
        "source du prix public",
        max_length=30,
        choices=PriceSource.choices,
        null=True,
        blank=True,
    )
    available_qty_total = models.PositiveIntegerField("stock mutualise", default=0)
    is_available = models.BooleanField("disponible", default=False, db_index=True)
    rollup_updated_at = models.DateTimeField("rollup recalcule le", null=True, blank=True)

    # Fields captured before an import writes to the product, and restored on rollback.
    SNAPSHOT_FIELDS = (
        "name",
        "ean",
        "sku",
        "manufacturer_ref",
        "description",
        "short_description",
        "brand",
        "family",
        "sub_family",
        "image_url",
        "weight_kg",
        "vat_rate",
        "is_eco",
        "attributes",
        "is_active",
        "cost_price_ht",
        "public_price_ttc",
        "public_price_source",
        "available_qty_total",
        "is_available",
    )

    ROLLUP_FIELDS = (
        "public_price_ttc",
        "public_price_source",
        "available_qty_total",
        "is_available",
        "rollup_updated_at",
    )

    class Meta:
        verbose_name = "produit"
        verbose_name_plural = "produits"
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.ean or self.sku or self.pk})"


# ---------------------------------------------------------------------------
# PricingCoefficient
# ---------------------------------------------------------------------------

class PricingCoefficient(TimeStampedModel):
    """Multiplier applied to the TTC cost when no supplier gives a public price.

    A row with an empty ``sub_family`` applies to the whole family.
    """

    family = models.CharField("famille", max_length=255)
    sub_family = models.CharField("sous-famille", max_length=255, null=True, blank=True)
    multiplier = models.DecimalField(
        "coefficient",
        max_digits=8,
        decimal_places=4,
        validators=[MinValueValidator(Decimal("0.0001"))],
    )

    class Meta:
        verbose_name = "coefficient de prix"
        verbose_name_plural = "coefficients de prix"
        ordering = ["family", "sub_family"]
        constraints = [
            models.UniqueConstraint(
                fields=["family", "sub_family"],
                name="uniq_coefficient_family_subfamily",
            ),
            models.UniqueConstraint(
                fields=["family"],
                condition=models.Q(sub_family__isnull=True),
                name="uniq_coefficient_family_default",
            ),
            models.CheckConstraint(
                condition=models.Q(multiplier__gt=0),
                name="coefficient_multiplier_positive",
            ),
        ]

    def __str__(self):
        scope = f"{self.family} / {self.sub_family}" if self.sub_family else self.family
        return f"{scope} x{self.multiplier}"

    def save(self, *args, **kwargs):
        self.family = (self.family or "").strip()
        self.sub_family = (self.sub_family or "").strip() or None
        super().save(*args, **kwargs)


# ---------------------------------------------------------------------------
# RollupRequest
# ---------------------------------------------------------------------------

class RollupRequest(models.Model):
    """Pending rollup recompute for one product.

    Written in the same transaction as the offer change that caused it and
    deleted once the recompute succeeds. A row that survives with
    ``last_error`` set is a failed recompute waiting for a retry.
    """

    product = models.OneToOneField(
        Product,
        on_delete=models.CASCADE,
        related_name="rollup_request",
        verbose_name="produit",
    )
    reason = models.CharField("motif", max_length=100, blank=True, default="")
    attempts = models.PositiveIntegerField("tentatives", default=0)
    last_error = models.TextField("derniere erreur", blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "recalcul en attente"
        verbose_name_plural = "recalculs en attente"
        ordering = ["created_at"]

    def __str__(self):
        return f"Rollup {self.product_id} ({self.reason})"
