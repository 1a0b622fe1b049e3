"""Models for suppliers and their per-product offers."""
from django.core.validators import MinValueValidator
from django.db import models

from core.models import TimeStampedModel


class Supplier(TimeStampedModel):
    code = models.CharField(
        "code",
        max_length=30,
        unique=True,
        help_text="Identifiant court en majuscules (ALKOR, COMLANDI, SOFT...).",
    )
    name = models.CharField("nom", max_length=255)
    contact_name = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=30, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    allows_multiple_references = models.BooleanField(
        "references multiples",
        default=False,
        help_text="Autorise plusieurs offres du fournisseur pour un meme produit.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} - {self.name}"

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)


class SupplierOffer(TimeStampedModel):
    """A supplier's price and stock record for one product."""

    product = models.ForeignKey(
        "catalog.Product",
        on_delete=models.CASCADE,
        related_name="offers",
        verbose_name="produit",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="offers",
        verbose_name="fournisseur",
    )
    supplier_reference = models.CharField("reference fournisseur", max_length=100, blank=True, default="")
    purchase_price_ht = models.DecimalField("prix d'achat HT", max_digits=12, decimal_places=4, null=True, blank=True)
    pvp_ttc = models.DecimalField("PVP conseille TTC", max_digits=12, decimal_places=2, null=True, blank=True)
    vat_rate = models.DecimalField("taux TVA", max_digits=5, decimal_places=2, null=True, blank=True)
    tax_breakdown = models.JSONField(
        "taxes annexes",
        default=dict,
        blank=True,
        help_text='Code taxe vers montant, ex. {"d3e": "0.02", "cop": "0.01"}.',
    )
    stock_qty = models.PositiveIntegerField("stock", default=0)
    min_qty = models.PositiveIntegerField("quantite minimale", default=1, validators=[MinValueValidator(1)])
    delivery_delay_days = models.PositiveIntegerField("delai de livraison (jours)", null=True, blank=True)
    is_active = models.BooleanField("active", default=True, db_index=True)
    is_preferred = models.BooleanField("preferee", default=False)
    priority_rank = models.IntegerField("rang de priorite", default=0)
    last_seen_at = models.DateTimeField("vue pour la derniere fois", null=True, blank=True, db_index=True)

    # Fields captured before an import writes to the offer, and restored on rollback.
    SNAPSHOT_FIELDS = (
        "supplier_reference",
        "purchase_price_ht",
        "pvp_ttc",
        "vat_rate",
        "tax_breakdown",
        "stock_qty",
        "min_qty",
        "delivery_delay_days",
        "is_active",
        "last_seen_at",
    )

    class Meta:
        verbose_name = "offre fournisseur"
        verbose_name_plural = "offres fournisseur"
        ordering = ["priority_rank", "-updated_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["supplier", "supplier_reference"],
                condition=~models.Q(supplier_reference=""),
                name="uniq_offer_supplier_reference",
            ),
            models.CheckConstraint(
                condition=models.Q(min_qty__gte=1),
                name="offer_min_qty_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["product", "supplier"], name="offer_product_supplier_idx"),
        ]

    def __str__(self):
        return f"{self.supplier_id}:{self.supplier_reference or '-'} -> {self.product_id}"
