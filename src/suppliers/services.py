"""Services for supplier offers.

Every offer write locks the owning product row first and queues a rollup
request in the same transaction. Callers drain the queue once their
transaction has committed (see :func:`catalog.rollup.process_rollup_queue`).
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from catalog.rollup import RollupBatchResult, process_rollup_queue, request_rollup
from catalog.services import lock_product
from core.services import create_audit_log

from .models import Supplier, SupplierOffer

logger = logging.getLogger("catalog_engine")

OFFER_VALUE_FIELDS = (
    "purchase_price_ht",
    "pvp_ttc",
    "vat_rate",
    "tax_breakdown",
    "stock_qty",
    "min_qty",
    "delivery_delay_days",
    "is_active",
    "is_preferred",
    "priority_rank",
)


class OfferConflictError(ValueError):
    """A supplier reference is already attached to another product."""


# =========================================================================
# SNAPSHOTS
# =========================================================================

def snapshot_offer(offer: SupplierOffer) -> dict:
    """Return the JSON-safe values of :attr:`SupplierOffer.SNAPSHOT_FIELDS`."""
    snapshot = {}
    for name in SupplierOffer.SNAPSHOT_FIELDS:
        value = getattr(offer, name)
        if isinstance(value, Decimal):
            value = str(value)
        elif name == "last_seen_at" and value is not None:
            value = value.isoformat()
        elif name == "tax_breakdown":
            value = dict(value or {})
        snapshot[name] = value
    return snapshot


def restore_offer_snapshot(offer: SupplierOffer, snapshot: dict) -> SupplierOffer:
    """Write ``snapshot`` back onto ``offer``, save it and queue a rollup."""
    changed = []
    for name, value in snapshot.items():
        if name not in SupplierOffer.SNAPSHOT_FIELDS:
            continue
        field = SupplierOffer._meta.get_field(name)
        setattr(offer, name, field.to_python(value) if value is not None else None)
        changed.append(name)
    if changed:
        offer.save(update_fields=[*changed, "updated_at"])
        request_rollup(offer.product_id, reason="offer_restored")
    return offer


# =========================================================================
# WRITES
# =========================================================================

@transaction.atomic
def upsert_offer(
    product,
    supplier: Supplier,
    *,
    supplier_reference: str = "",
    values: dict | None = None,
    seen_at=None,
    reason: str = "offer_upsert",
) -> tuple[SupplierOffer, bool, dict | None]:
    """Create or update the offer of ``supplier`` for ``product``.

    The offer is found by ``(supplier, supplier_reference)`` first. Unless the
    supplier allows several references per product, an existing offer of the
    same supplier on the product is reused (and re-referenced) rather than
    duplicated. The caller is expected to hold the product lock.

    Args:
        product: the owning :class:`~catalog.models.Product`.
        supplier: the offering supplier.
        supplier_reference: the supplier's own article code, may be empty.
        values: offer fields to write; keys outside ``OFFER_VALUE_FIELDS``
            are ignored.
        seen_at: stamped on ``last_seen_at``; defaults to now.
        reason: recorded on the queued rollup request.

    Returns:
        ``(offer, created, previous)`` where ``previous`` is the snapshot of
        the offer before the write, or ``None`` if it was created.

    Raises:
        OfferConflictError: the reference already belongs to another product.
    """
    reference = (supplier_reference or "").strip()
    values = {key: value for key, value in (values or {}).items() if key in OFFER_VALUE_FIELDS}

    offer = None
    if reference:
        offer = (
            SupplierOffer.objects.select_for_update()
            .filter(supplier=supplier, supplier_reference=reference)
            .first()
        )
        if offer is not None and offer.product_id != product.pk:
            raise OfferConflictError(
                f"La reference {reference} du fournisseur {supplier.code} "
                f"est deja rattachee a un autre produit."
            )
    if offer is None and not supplier.allows_multiple_references:
        offer = (
            SupplierOffer.objects.select_for_update()
            .filter(product=product, supplier=supplier)
            .order_by("priority_rank", "created_at")
            .first()
        )

    created = offer is None
    previous = None if created else snapshot_offer(offer)
    if created:
        offer = SupplierOffer(product=product, supplier=supplier, supplier_reference=reference)
    elif reference:
        offer.supplier_reference = reference

    for key, value in values.items():
        setattr(offer, key, value)
    offer.last_seen_at = seen_at or timezone.now()
    offer.save()

    request_rollup(product.pk, reason=reason)
    return offer, created, previous


def set_offer_active(offer: SupplierOffer, is_active: bool, *, actor=None) -> tuple[SupplierOffer, RollupBatchResult]:
    """Toggle an offer and recompute the product rollup.

    The flag and the rollup request commit together; the recompute runs
    afterwards so a recompute failure never undoes the toggle.
    """
    with transaction.atomic():
        lock_product(offer.product_id)
        offer = SupplierOffer.objects.select_for_update().get(pk=offer.pk)
        before = offer.is_active
        if before != is_active:
            offer.is_active = is_active
            offer.save(update_fields=["is_active", "updated_at"])
        request_rollup(offer.product_id, reason="offer_toggle")
        create_audit_log(
            actor=actor,
            action="SUPPLIER_OFFER_TOGGLED",
            entity_type="SupplierOffer",
            entity_id=offer.pk,
            before={"is_active": before},
            after={"is_active": offer.is_active},
        )

    result = process_rollup_queue([offer.product_id])
    logger.info(
        "Offer %s set active=%s (product %s, rollup ok=%d failed=%d).",
        offer.pk,
        offer.is_active,
        offer.product_id,
        result.recomputed,
        result.failed,
    )
    return offer, result


def deactivate_ghost_offers(now=None, thresholds: dict[str, int] | None = None) -> dict[str, int]:
    """Deactivate offers no supplier file has mentioned recently.

    An active offer whose ``last_seen_at`` is older than its supplier's
    threshold (in days) is switched off and its product rollup recomputed.
    Suppliers without a threshold, and offers never seen, are left alone.

    Returns:
        Number of deactivated offers per supplier code.
    """
    now = now or timezone.now()
    thresholds = thresholds if thresholds is not None else settings.GHOST_OFFER_THRESHOLD_DAYS

    counts: dict[str, int] = {}
    touched_products: set = set()
    for code, days in thresholds.items():
        cutoff = now - timedelta(days=days)
        stale = list(
            SupplierOffer.objects.filter(
                supplier__code=code.upper(),
                is_active=True,
                last_seen_at__lt=cutoff,
            ).values_list("pk", "product_id")
        )
        by_product: dict = {}
        for offer_pk, product_id in stale:
            by_product.setdefault(product_id, []).append(offer_pk)

        deactivated = 0
        for product_id, offer_pks in by_product.items():
            with transaction.atomic():
                lock_product(product_id)
                deactivated += SupplierOffer.objects.filter(
                    pk__in=offer_pks,
                    is_active=True,
                    last_seen_at__lt=cutoff,
                ).update(is_active=False, updated_at=now)
                request_rollup(product_id, reason="ghost_offer")
            touched_products.add(product_id)

        counts[code.upper()] = deactivated
        if deactivated:
            logger.info("Deactivated %d ghost offer(s) for supplier %s (> %d days).", deactivated, code, days)

    if touched_products:
        process_rollup_queue(touched_products)
    return counts
