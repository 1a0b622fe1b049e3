"""Admin configuration for the catalog app."""
from django.contrib import admin, messages

from suppliers.models import SupplierOffer

from .models import PricingCoefficient, Product, RollupRequest
from .rollup import process_rollup_queue, request_rollup


# ---------------------------------------------------------------------------
# Inlines
# ---------------------------------------------------------------------------

class SupplierOfferInline(admin.TabularInline):
    model = SupplierOffer
    extra = 0
    fields = (
        "supplier",
        "supplier_reference",
        "purchase_price_ht",
        "pvp_ttc",
        "stock_qty",
        "is_active",
        "is_preferred",
        "priority_rank",
        "last_seen_at",
    )
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------

@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "ean",
        "sku",
        "family",
        "public_price_ttc",
        "public_price_source",
        "available_qty_total",
        "is_available",
        "is_active",
    )
    list_filter = ("is_active", "is_available", "public_price_source", "family")
    search_fields = ("name", "ean", "sku", "manufacturer_ref")
    readonly_fields = (
        "id",
        "cost_price_ht",
        "public_price_ttc",
        "public_price_source",
        "available_qty_total",
        "is_available",
        "rollup_updated_at",
        "created_at",
        "updated_at",
    )
    inlines = [SupplierOfferInline]
    list_per_page = 50
    actions = ["recompute_rollup"]
    fieldsets = (
        (None, {
            "fields": ("name", "ean", "sku", "manufacturer_ref", "description", "short_description"),
        }),
        ("Classement", {
            "fields": ("brand", "family", "sub_family", "is_eco", "attributes"),
        }),
        ("Logistique", {
            "fields": ("image_url", "weight_kg", "vat_rate", "is_active"),
        }),
        ("Prix et disponibilite (calcules)", {
            "fields": (
                "cost_price_ht",
                "public_price_ttc",
                "public_price_source",
                "available_qty_total",
                "is_available",
                "rollup_updated_at",
            ),
        }),
        ("Metadonnees", {
            "classes": ("collapse",),
            "fields": ("id", "created_at", "updated_at"),
        }),
    )

    @admin.action(description="Recalculer prix et disponibilite")
    def recompute_rollup(self, request, queryset):
        product_ids = list(queryset.values_list("pk", flat=True))
        for product_id in product_ids:
            request_rollup(product_id, reason="admin")
        result = process_rollup_queue(product_ids)
        level = messages.WARNING if result.failed else messages.SUCCESS
        self.message_user(
            request,
            f"{result.recomputed} produit(s) recalcule(s), {result.failed} echec(s).",
            level=level,
        )


# ---------------------------------------------------------------------------
# PricingCoefficient
# ---------------------------------------------------------------------------

@admin.register(PricingCoefficient)
class PricingCoefficientAdmin(admin.ModelAdmin):
    list_display = ("family", "sub_family", "multiplier", "updated_at")
    search_fields = ("family", "sub_family")
    readonly_fields = ("id", "created_at", "updated_at")


# ---------------------------------------------------------------------------
# RollupRequest
# ---------------------------------------------------------------------------

@admin.register(RollupRequest)
class RollupRequestAdmin(admin.ModelAdmin):
    list_display = ("product", "reason", "attempts", "last_error", "created_at")
    list_filter = ("reason",)
    readonly_fields = ("product", "reason", "attempts", "last_error", "created_at", "updated_at")
    list_select_related = ("product",)
    actions = ["retry"]

    def has_add_permission(self, request):
        return False

    @admin.action(description="Relancer le recalcul")
    def retry(self, request, queryset):
        result = process_rollup_queue(queryset.values_list("product_id", flat=True))
        self.message_user(request, f"{result.recomputed} recalcul(s), {result.failed} echec(s).")
