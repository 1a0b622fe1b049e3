"""Rollup engine: derive a product's public price and availability from its offers.

The cascade walks the configured supplier priority list and takes the first
supplier whose active offer carries a suggested retail price (``pvp_ttc``).
When no supplier suggests one, the price falls back to
``cost_price_ht * (1 + vat_rate / 100) * coefficient`` using the pricing
coefficient of the product family. Stock is mutualised across every active
offer, whichever offer supplied the price.

Offer writes never recompute inline. They call :func:`request_rollup` inside
their own transaction and the queue is drained afterwards with
:func:`process_rollup_queue`, so a failed recompute stays visible on its
:class:`~catalog.models.RollupRequest` row until a later drain succeeds.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from catalog.models import PricingCoefficient, Product, RollupRequest

logger = logging.getLogger("catalog_engine")

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
COEF_SOURCE = Product.PriceSource.COEF.value


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OfferView:
    """The slice of a supplier offer the cascade looks at."""

    supplier_code: str
    is_active: bool
    pvp_ttc: Decimal | None
    stock_qty: int
    priority_rank: int = 0
    is_preferred: bool = False
    updated_at: datetime | None = None
    pk: str = ""

    @classmethod
    def from_offer(cls, offer) -> "OfferView":
        return cls(
            supplier_code=offer.supplier.code,
            is_active=offer.is_active,
            pvp_ttc=offer.pvp_ttc,
            stock_qty=offer.stock_qty or 0,
            priority_rank=offer.priority_rank,
            is_preferred=offer.is_preferred,
            updated_at=offer.updated_at,
            pk=str(offer.pk),
        )


@dataclass(frozen=True)
class RollupValues:
    public_price_ttc: Decimal | None
    public_price_source: str | None
    available_qty_total: int
    is_available: bool

    def as_dict(self) -> dict:
        return {
            "public_price_ttc": self.public_price_ttc,
            "public_price_source": self.public_price_source,
            "available_qty_total": self.available_qty_total,
            "is_available": self.is_available,
        }


@dataclass
class RollupBatchResult:
    recomputed: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def merge(self, other: "RollupBatchResult") -> None:
        self.recomputed += other.recomputed
        self.failed += other.failed
        self.failures.extend(other.failures)


def _norm(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


class CoefficientTable:
    """In-memory view of :class:`PricingCoefficient` keyed by normalised family."""

    def __init__(self, rows: Iterable[tuple[str, str | None, Decimal]] = ()):
        self._table: dict[tuple[str, str], Decimal] = {}
        for family, sub_family, multiplier in rows:
            self._table[(_norm(family), _norm(sub_family))] = Decimal(multiplier)

    @classmethod
    def from_db(cls) -> "CoefficientTable":
        return cls(PricingCoefficient.objects.values_list("family", "sub_family", "multiplier"))

    def lookup(self, family: str | None, sub_family: str | None) -> Decimal | None:
        """Exact (family, sub_family) first, then the family-wide coefficient."""
        family_key = _norm(family)
        if not family_key:
            return None
        sub_key = _norm(sub_family)
        if sub_key and (family_key, sub_key) in self._table:
            return self._table[(family_key, sub_key)]
        return self._table.get((family_key, ""))


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------

def supplier_priority(offers: Sequence[OfferView], priority: Sequence[str] | None = None) -> list[str]:
    """Configured priority list followed by any other supplier codes, alphabetically."""
    configured = [code.upper() for code in (priority if priority is not None else settings.SUPPLIER_PRICE_PRIORITY)]
    extra = sorted({o.supplier_code.upper() for o in offers} - set(configured))
    return configured + extra


def _offer_order(offer: OfferView) -> tuple:
    # Same-supplier tie-break: rank, then preferred, then most recently updated, then pk.
    stamp = offer.updated_at.timestamp() if offer.updated_at else float("-inf")
    return (offer.priority_rank, not offer.is_preferred, -stamp, offer.pk)


def price_source_tag(supplier_code: str) -> str:
    return f"PVP_{supplier_code.upper()}"


def compute_rollup(
    offers: Iterable[OfferView],
    *,
    cost_price_ht: Decimal | None,
    vat_rate: Decimal | None,
    family: str | None,
    sub_family: str | None,
    coefficients: CoefficientTable,
    priority: Sequence[str] | None = None,
) -> RollupValues:
    """Run the priority cascade over ``offers``. No database access."""
    active = [o for o in offers if o.is_active]

    price = None
    source = None
    by_supplier: dict[str, list[OfferView]] = {}
    for offer in active:
        by_supplier.setdefault(offer.supplier_code.upper(), []).append(offer)

    for code in supplier_priority(active, priority):
        candidates = sorted(by_supplier.get(code, ()), key=_offer_order)
        priced = next((o for o in candidates if o.pvp_ttc is not None), None)
        if priced is not None:
            price = Decimal(priced.pvp_ttc).quantize(CENT, rounding=ROUND_HALF_UP)
            source = price_source_tag(code)
            break

    if source is None:
        multiplier = coefficients.lookup(family, sub_family)
        cost = Decimal(cost_price_ht or 0)
        if multiplier is not None and cost > 0:
            rate = Decimal(vat_rate) if vat_rate is not None else Decimal(str(settings.DEFAULT_VAT_RATE))
            price = (cost * (1 + rate / HUNDRED) * multiplier).quantize(CENT, rounding=ROUND_HALF_UP)
            source = COEF_SOURCE

    total = sum(max(o.stock_qty, 0) for o in active)
    return RollupValues(
        public_price_ttc=price,
        public_price_source=source,
        available_qty_total=total,
        is_available=any(o.stock_qty > 0 for o in active),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@transaction.atomic
def recompute_product_rollup(
    product_id,
    *,
    coefficients: CoefficientTable | None = None,
    priority: Sequence[str] | None = None,
) -> RollupValues:
    """Recompute and persist the rollup fields of one product.

    The product row is locked for the duration so the offer set read here is
    the one every concurrent offer writer (which locks the same row first)
    has committed.

    Raises:
        Product.DoesNotExist: if the product was deleted.
    """
    from suppliers.models import SupplierOffer

    product = Product.objects.select_for_update().get(pk=product_id)
    offers = [
        OfferView.from_offer(offer)
        for offer in SupplierOffer.objects.filter(product_id=product.pk).select_related("supplier")
    ]
    values = compute_rollup(
        offers,
        cost_price_ht=product.cost_price_ht,
        vat_rate=product.vat_rate,
        family=product.family,
        sub_family=product.sub_family,
        coefficients=coefficients or CoefficientTable.from_db(),
        priority=priority,
    )

    product.public_price_ttc = values.public_price_ttc
    product.public_price_source = values.public_price_source
    product.available_qty_total = values.available_qty_total
    product.is_available = values.is_available
    product.rollup_updated_at = timezone.now()
    product.save(update_fields=[*Product.ROLLUP_FIELDS, "updated_at"])
    return values


def request_rollup(product_id, reason: str = "") -> None:
    """Queue a recompute for ``product_id`` in the caller's transaction."""
    RollupRequest.objects.update_or_create(
        product_id=product_id,
        defaults={"reason": reason[:100]},
    )


def process_rollup_queue(product_ids: Iterable | None = None, *, limit: int | None = None) -> RollupBatchResult:
    """Drain pending rollup requests, optionally restricted to ``product_ids``.

    Each product is recomputed in its own savepoint. A failure is logged and
    recorded on the request (``attempts`` and ``last_error``) instead of being
    raised, so one broken product never blocks the rest of the queue.
    """
    qs = RollupRequest.objects.order_by("created_at")
    if product_ids is not None:
        qs = qs.filter(product_id__in=list(product_ids))
    if limit:
        qs = qs[:limit]
    pending = list(qs.values_list("pk", "product_id"))

    result = RollupBatchResult()
    if not pending:
        return result

    coefficients = CoefficientTable.from_db()
    for request_pk, product_id in pending:
        try:
            with transaction.atomic():
                recompute_product_rollup(product_id, coefficients=coefficients)
                RollupRequest.objects.filter(pk=request_pk).delete()
        except Exception as exc:
            logger.warning("Rollup recompute failed for product %s: %s", product_id, exc, exc_info=True)
            RollupRequest.objects.filter(pk=request_pk).update(
                attempts=F("attempts") + 1,
                last_error=str(exc)[:2000],
            )
            result.failed += 1
            result.failures.append((str(product_id), str(exc)))
        else:
            result.recomputed += 1

    if result.failed:
        logger.warning(
            "Rollup queue drained with failures: %d recomputed, %d failed.",
            result.recomputed,
            result.failed,
        )
    return result


def recompute_all_rollups(batch_size: int | None = None) -> RollupBatchResult:
    """Recompute every active product, ``batch_size`` ids at a time."""
    batch_size = batch_size or settings.ROLLUP_SWEEP_BATCH_SIZE
    coefficients = CoefficientTable.from_db()
    result = RollupBatchResult()

    product_ids = list(
        Product.objects.filter(is_active=True).order_by("pk").values_list("pk", flat=True)
    )
    for start in range(0, len(product_ids), batch_size):
        for product_id in product_ids[start:start + batch_size]:
            try:
                recompute_product_rollup(product_id, coefficients=coefficients)
            except Product.DoesNotExist:
                continue
            except Exception as exc:
                logger.warning("Rollup sweep failed for product %s: %s", product_id, exc, exc_info=True)
                request_rollup(product_id, reason="sweep_failed")
                RollupRequest.objects.filter(product_id=product_id).update(last_error=str(exc)[:2000])
                result.failed += 1
                result.failures.append((str(product_id), str(exc)))
            else:
                result.recomputed += 1
        logger.info(
            "Rollup sweep progress: %d/%d products.",
            min(start + batch_size, len(product_ids)),
            len(product_ids),
        )
    return result
