"""
Service functions for the catalog app.

Product lookup, field snapshots used by import rollback, and the
cost-price refresh that feeds the coefficient fallback.
"""
import logging
from decimal import Decimal

from django.db.models import Min

from .models import Product

logger = logging.getLogger("catalog_engine")


# =========================================================================
# LOOKUP
# =========================================================================

def lock_product(product_id) -> Product:
    """Return the product with its row locked until the current transaction ends."""
    return Product.objects.select_for_update().get(pk=product_id)


def find_product_by_keys(*, ean: str = "", sku: str = "", manufacturer_ref: str = "") -> Product | None:
    """Match a product by EAN, then internal SKU, then manufacturer reference.

    The first non-empty key that matches wins; an ambiguous key resolves to
    the oldest product.
    """
    for field_name, value in (("ean", ean), ("sku", sku), ("manufacturer_ref", manufacturer_ref)):
        value = (value or "").strip()
        if not value:
            continue
        product = Product.objects.filter(**{field_name: value}).order_by("created_at").first()
        if product is not None:
            return product
    return None


# =========================================================================
# SNAPSHOTS
# =========================================================================

def snapshot_product(product: Product) -> dict:
    """Return the JSON-safe values of :attr:`Product.SNAPSHOT_FIELDS`."""
    snapshot = {}
    for name in Product.SNAPSHOT_FIELDS:
        value = getattr(product, name)
        if isinstance(value, Decimal):
            value = str(value)
        snapshot[name] = value
    return snapshot


def restore_product_snapshot(product: Product, snapshot: dict) -> Product:
    """Write ``snapshot`` back onto ``product`` and save it.

    Keys outside :attr:`Product.SNAPSHOT_FIELDS` are ignored. Values are
    converted back through the model field, so decimals stored as strings
    come back as :class:`~decimal.Decimal`.
    """
    changed = []
    for name, value in snapshot.items():
        if name not in Product.SNAPSHOT_FIELDS:
            continue
        field = Product._meta.get_field(name)
        setattr(product, name, field.to_python(value) if value is not None else None)
        changed.append(name)
    if changed:
        product.save(update_fields=[*changed, "updated_at"])
    return product


# =========================================================================
# COST PRICE
# =========================================================================

def refresh_cost_price(product: Product) -> bool:
    """Set ``cost_price_ht`` to the lowest purchase price among active offers.

    Products without any priced active offer keep their current cost.
    Returns True when the value changed.
    """
    lowest = (
        product.offers.filter(is_active=True, purchase_price_ht__gt=0)
        .aggregate(lowest=Min("purchase_price_ht"))["lowest"]
    )
    if lowest is None or lowest == product.cost_price_ht:
        return False
    product.cost_price_ht = lowest
    product.save(update_fields=["cost_price_ht", "updated_at"])
    return True
