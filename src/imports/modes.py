"""Apply modes: how one validated row is matched and written.

``create`` and ``enrich`` take catalogue rows and write product fields (and
the job supplier's offer); ``prices`` takes pricing rows and only touches an
existing offer. Each strategy returns what the pipeline needs to undo the
row later.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from catalog.models import Product
from catalog.services import find_product_by_keys, lock_product, refresh_cost_price, snapshot_product
from catalog.rollup import request_rollup
from suppliers.models import SupplierOffer
from suppliers.services import OfferConflictError, snapshot_offer, upsert_offer

from .exceptions import ImportJobStateError, RowApplicationError
from .fields import TAX_CODES, ImportKind
from .models import ApplyMode

DEFAULT_OFFER_VAT_RATE = Decimal("20")

# Catalogue key -> Product field.
PRODUCT_FIELD_MAP = {
    "name": "name",
    "ean": "ean",
    "sku_interne": "sku",
    "manufacturer_ref": "manufacturer_ref",
    "description": "description",
    "short_description": "short_description",
    "brand": "brand",
    "family": "family",
    "sub_family": "sub_family",
    "image_url": "image_url",
    "weight_kg": "weight_kg",
    "vat_rate": "vat_rate",
    "is_eco": "is_eco",
}

# Catalogue keys kept verbatim in Product.attributes.
ATTRIBUTE_KEYS = ("nomenclature", "manufacturer", "lifecycle", "article_status", "replacement_ref", "warranty")

OFFER_KEYS = ("purchase_price_ht", "pvp_ttc", "vat_rate", "stock_qty", "min_qty", "delivery_delay_days")

ACTIVE_LIFECYCLE = "actif"


@dataclass
class RowOutcome:
    product: Product
    product_created: bool
    previous_snapshot: dict | None
    offer: SupplierOffer | None = None
    offer_created: bool = False
    previous_offer_snapshot: dict | None = None


def _tax_breakdown(cleaned: dict) -> dict | None:
    """Positive tax amounts keyed by tax code, or None when the row has no tax column."""
    if not any(code in cleaned for code in TAX_CODES):
        return None
    return {code: str(cleaned[code]) for code in TAX_CODES if code in cleaned and cleaned[code] > 0}


def _truncate(model, field_name, value):
    max_length = getattr(model._meta.get_field(field_name), "max_length", None)
    if max_length and isinstance(value, str):
        return value[:max_length]
    return value


class ApplyStrategy:
    mode: str = ""
    kind: str = ImportKind.CATALOGUE
    requires_supplier = False

    def check_job(self, job) -> None:
        """Reject mode/job combinations before anything is written."""
        if job.kind != self.kind:
            raise ImportJobStateError(
                f"Le mode {self.mode} ne s'applique pas a un import de type {job.kind}."
            )
        if self.requires_supplier and job.supplier_id is None:
            raise ImportJobStateError(f"Le mode {self.mode} exige un fournisseur sur l'import.")

    def apply_row(self, job, cleaned: dict, *, seen_at) -> RowOutcome:
        raise NotImplementedError


class CreateStrategy(ApplyStrategy):
    """Update the matching product or create a new one."""

    mode = ApplyMode.CREATE

    def resolve(self, job, cleaned: dict) -> Product | None:
        """EAN first, then the job supplier's reference, then SKU, then manufacturer reference."""
        ean = cleaned.get("ean", "")
        if ean:
            product = Product.objects.filter(ean=ean).order_by("created_at").first()
            if product is not None:
                return product
        reference = cleaned.get("supplier_reference", "")
        if reference and job.supplier_id:
            offer = (
                SupplierOffer.objects.filter(supplier_id=job.supplier_id, supplier_reference=reference)
                .select_related("product")
                .first()
            )
            if offer is not None:
                return offer.product
        return find_product_by_keys(
            sku=cleaned.get("sku_interne", ""),
            manufacturer_ref=cleaned.get("manufacturer_ref", ""),
        )

    def not_found(self, cleaned: dict):
        return None

    def merge_product(self, product: Product, cleaned: dict) -> None:
        for key, field_name in PRODUCT_FIELD_MAP.items():
            if key in cleaned:
                setattr(product, field_name, _truncate(Product, field_name, cleaned[key]))
        extra = {key: cleaned[key] for key in ATTRIBUTE_KEYS if key in cleaned}
        if extra:
            product.attributes = {**(product.attributes or {}), **extra}

    def offer_values(self, cleaned: dict) -> dict:
        values = {key: cleaned[key] for key in OFFER_KEYS if key in cleaned}
        taxes = _tax_breakdown(cleaned)
        if taxes is not None:
            values["tax_breakdown"] = taxes
        lifecycle = str(cleaned.get("lifecycle", "")).strip().lower()
        if lifecycle:
            values["is_active"] = lifecycle == ACTIVE_LIFECYCLE
        return values

    def apply_row(self, job, cleaned: dict, *, seen_at) -> RowOutcome:
        product = self.resolve(job, cleaned)
        if product is None:
            self.not_found(cleaned)

        if product is not None:
            product = lock_product(product.pk)
            outcome = RowOutcome(product=product, product_created=False, previous_snapshot=snapshot_product(product))
        else:
            product = Product(name="")
            outcome = RowOutcome(product=product, product_created=True, previous_snapshot=None)

        self.merge_product(product, cleaned)
        product.save()

        if job.supplier_id:
            try:
                offer, offer_created, previous = upsert_offer(
                    product,
                    job.supplier,
                    supplier_reference=cleaned.get("supplier_reference", ""),
                    values=self.offer_values(cleaned),
                    seen_at=seen_at,
                    reason=f"import_{self.mode}",
                )
            except OfferConflictError as exc:
                raise RowApplicationError(str(exc)) from exc
            outcome.offer = offer
            outcome.offer_created = offer_created
            outcome.previous_offer_snapshot = previous
            if "purchase_price_ht" in cleaned:
                refresh_cost_price(product)
        else:
            request_rollup(product.pk, reason=f"import_{self.mode}")
        return outcome


class EnrichStrategy(CreateStrategy):
    """Update products matched strictly by EAN; never create one."""

    mode = ApplyMode.ENRICH

    def resolve(self, job, cleaned: dict) -> Product | None:
        ean = cleaned.get("ean", "")
        if not ean:
            return None
        return Product.objects.filter(ean=ean).order_by("created_at").first()

    def not_found(self, cleaned: dict):
        ean = cleaned.get("ean", "")
        if not ean:
            raise RowApplicationError("EAN requis pour l'enrichissement")
        raise RowApplicationError(f"Aucun produit correspondant a l'EAN {ean}")


class PriceOnlyStrategy(ApplyStrategy):
    """Refresh price, tax and stock of an existing offer found by supplier reference."""

    mode = ApplyMode.PRICES
    kind = ImportKind.PRICING
    requires_supplier = True

    def apply_row(self, job, cleaned: dict, *, seen_at) -> RowOutcome:
        reference = cleaned["ref_art"]
        match = (
            SupplierOffer.objects.filter(supplier_id=job.supplier_id, supplier_reference=reference)
            .values_list("pk", "product_id")
            .first()
        )
        if match is None:
            raise RowApplicationError(f"Aucune offre pour la reference {reference}")
        offer_pk, product_id = match

        product = lock_product(product_id)
        offer = SupplierOffer.objects.select_for_update().get(pk=offer_pk)
        outcome = RowOutcome(
            product=product,
            product_created=False,
            previous_snapshot=snapshot_product(product),
            offer=offer,
            offer_created=False,
            previous_offer_snapshot=snapshot_offer(offer),
        )

        for key in OFFER_KEYS:
            if key in cleaned:
                setattr(offer, key, cleaned[key])
        if "vat_rate" not in cleaned and offer.vat_rate is None:
            offer.vat_rate = DEFAULT_OFFER_VAT_RATE
        taxes = _tax_breakdown(cleaned)
        if taxes is not None:
            offer.tax_breakdown = taxes
        offer.last_seen_at = seen_at
        offer.save()

        request_rollup(product.pk, reason="import_prices")
        if "purchase_price_ht" in cleaned:
            refresh_cost_price(product)
        return outcome


STRATEGIES: dict[str, ApplyStrategy] = {
    ApplyMode.CREATE: CreateStrategy(),
    ApplyMode.ENRICH: EnrichStrategy(),
    ApplyMode.PRICES: PriceOnlyStrategy(),
}


def get_strategy(mode) -> ApplyStrategy:
    try:
        return STRATEGIES[ApplyMode(mode)]
    except ValueError:
        raise ImportJobStateError(f"Mode d'application inconnu : {mode}")
