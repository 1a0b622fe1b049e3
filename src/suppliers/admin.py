"""Admin configuration for the suppliers app."""
from django.contrib import admin, messages

from .models import Supplier, SupplierOffer
from .services import set_offer_active


# ---------------------------------------------------------------------------
# Supplier
# ---------------------------------------------------------------------------

@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "allows_multiple_references", "is_active", "created_at")
    list_filter = ("is_active", "allows_multiple_references")
    search_fields = ("code", "name", "email")
    readonly_fields = ("id", "created_at", "updated_at")


# ---------------------------------------------------------------------------
# SupplierOffer
# ---------------------------------------------------------------------------

@admin.register(SupplierOffer)
class SupplierOfferAdmin(admin.ModelAdmin):
    list_display = (
        "product",
        "supplier",
        "supplier_reference",
        "purchase_price_ht",
        "pvp_ttc",
        "stock_qty",
        "is_active",
        "last_seen_at",
    )
    list_filter = ("supplier", "is_active", "is_preferred")
    search_fields = ("supplier_reference", "product__name", "product__ean")
    list_select_related = ("product", "supplier")
    raw_id_fields = ("product",)
    readonly_fields = ("id", "last_seen_at", "created_at", "updated_at")
    list_per_page = 50
    actions = ["activate_offers", "deactivate_offers"]

    def _toggle(self, request, queryset, is_active):
        failed = 0
        for offer in queryset:
            _offer, result = set_offer_active(offer, is_active, actor=request.user)
            failed += result.failed
        if failed:
            self.message_user(request, f"{failed} recalcul(s) en echec, voir la file de recalcul.", level=messages.WARNING)
        else:
            self.message_user(request, f"{queryset.count()} offre(s) mise(s) a jour.")

    @admin.action(description="Activer les offres selectionnees")
    def activate_offers(self, request, queryset):
        self._toggle(request, queryset, True)

    @admin.action(description="Desactiver les offres selectionnees")
    def deactivate_offers(self, request, queryset):
        self._toggle(request, queryset, False)
