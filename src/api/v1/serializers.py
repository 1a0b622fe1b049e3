"""Serializers for the catalogue back-office API v1."""
from rest_framework import serializers

from catalog.models import PricingCoefficient, Product
from imports.exceptions import ImportMappingError
from imports.fields import ImportKind, get_dictionary
from imports.mapping import validate_mapping
from imports.models import ApplyMode, ImportJob, ImportJobRow, ImportMappingTemplate
from suppliers.models import Supplier, SupplierOffer


def _check_mapping(mapping, kind):
    try:
        validate_mapping(mapping, get_dictionary(kind))
    except ImportMappingError as exc:
        raise serializers.ValidationError({"mapping": str(exc)})


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = [
            "id", "code", "name", "contact_name", "phone", "email",
            "allows_multiple_references", "is_active", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_code(self, value):
        return value.strip().upper()


class SupplierOfferSerializer(serializers.ModelSerializer):
    supplier_code = serializers.CharField(source="supplier.code", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = SupplierOffer
        fields = [
            "id", "product", "product_name", "supplier", "supplier_code", "supplier_reference",
            "purchase_price_ht", "pvp_ttc", "vat_rate", "tax_breakdown",
            "stock_qty", "min_qty", "delivery_delay_days",
            "is_active", "is_preferred", "priority_rank", "last_seen_at", "updated_at",
        ]
        read_only_fields = fields


class OfferToggleSerializer(serializers.Serializer):
    """Omit ``is_active`` to flip the current value."""

    is_active = serializers.BooleanField(required=False, allow_null=True, default=None)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class PricingCoefficientSerializer(serializers.ModelSerializer):
    class Meta:
        model = PricingCoefficient
        fields = ["id", "family", "sub_family", "multiplier", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_multiplier(self, value):
        if value <= 0:
            raise serializers.ValidationError("Le coefficient doit etre > 0.")
        return value

    def validate(self, attrs):
        family = (attrs.get("family", getattr(self.instance, "family", "")) or "").strip()
        sub_family = (attrs.get("sub_family", getattr(self.instance, "sub_family", None)) or "").strip() or None
        if not family:
            raise serializers.ValidationError({"family": "La famille est obligatoire."})
        clash = PricingCoefficient.objects.filter(family=family, sub_family=sub_family)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            raise serializers.ValidationError("Un coefficient existe deja pour cette famille / sous-famille.")
        return attrs


class ProductSerializer(serializers.ModelSerializer):
    offers_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id", "name", "ean", "sku", "manufacturer_ref",
            "description", "short_description", "brand", "family", "sub_family",
            "image_url", "weight_kg", "vat_rate", "is_eco", "attributes", "is_active",
            "cost_price_ht", "public_price_ttc", "public_price_source",
            "available_qty_total", "is_available", "rollup_updated_at",
            "offers_count", "created_at", "updated_at",
        ]
        read_only_fields = fields


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

class ImportMappingTemplateSerializer(serializers.ModelSerializer):
    class Meta:
        model = ImportMappingTemplate
        fields = ["id", "supplier", "name", "kind", "mapping", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]
        # Uniqueness is checked in validate(); creation upserts by name.
        validators = []

    def validate_mapping(self, value):
        if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
            raise serializers.ValidationError("Le mapping doit associer chaque champ a un nom de colonne.")
        return {key: column for key, column in value.items() if column}

    def validate(self, attrs):
        kind = attrs.get("kind", getattr(self.instance, "kind", ImportKind.CATALOGUE))
        if "mapping" in attrs:
            _check_mapping(attrs["mapping"], kind)
        if self.instance is None:
            # Creation overwrites a template of the same name.
            return attrs
        name = attrs.get("name", self.instance.name)
        supplier = attrs.get("supplier", self.instance.supplier)
        clash = ImportMappingTemplate.objects.filter(name=name, kind=kind, supplier=supplier).exclude(pk=self.instance.pk)
        if clash.exists():
            raise serializers.ValidationError({"name": "Un modele porte deja ce nom."})
        return attrs


class ImportJobSerializer(serializers.ModelSerializer):
    supplier_code = serializers.CharField(source="supplier.code", read_only=True, default=None)
    created_by_name = serializers.CharField(source="created_by.get_username", read_only=True, default=None)

    class Meta:
        model = ImportJob
        fields = [
            "id", "filename", "supplier", "supplier_code", "kind", "mode", "mapping", "status",
            "total_rows", "ok_rows", "error_rows", "created_count", "updated_count",
            "rollups_recomputed", "details", "error_message",
            "applied_at", "rolled_back_at", "created_by", "created_by_name", "created_at", "updated_at",
        ]
        read_only_fields = fields


class ImportJobCreateSerializer(serializers.Serializer):
    filename = serializers.CharField(max_length=255)
    supplier = serializers.PrimaryKeyRelatedField(queryset=Supplier.objects.all(), required=False, allow_null=True)
    kind = serializers.ChoiceField(choices=ImportKind.choices, default=ImportKind.CATALOGUE)
    mapping = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)

    def validate(self, attrs):
        if attrs.get("mapping"):
            _check_mapping({k: v for k, v in attrs["mapping"].items() if v}, attrs["kind"])
        return attrs


class ImportJobRowSerializer(serializers.ModelSerializer):
    class Meta:
        model = ImportJobRow
        fields = [
            "id", "row_index", "status", "raw_data", "mapped_data", "error_messages",
            "product", "offer", "product_created", "offer_created", "updated_at",
        ]
        read_only_fields = fields


class ImportUploadSerializer(serializers.Serializer):
    file = serializers.FileField()
    supplier = serializers.PrimaryKeyRelatedField(queryset=Supplier.objects.all(), required=False, allow_null=True)
    kind = serializers.ChoiceField(choices=ImportKind.choices, default=ImportKind.CATALOGUE)
    template = serializers.PrimaryKeyRelatedField(
        queryset=ImportMappingTemplate.objects.all(),
        required=False,
        allow_null=True,
    )
    apply_mode = serializers.ChoiceField(choices=ApplyMode.choices, required=False, allow_blank=True)


class DetectMappingSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=ImportKind.choices, default=ImportKind.CATALOGUE)
    headers = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)
    file = serializers.FileField(required=False)

    def validate(self, attrs):
        if not attrs.get("headers") and not attrs.get("file"):
            raise serializers.ValidationError("Fournir un fichier ou une liste d'en-tetes.")
        return attrs


class StageRowsSerializer(serializers.Serializer):
    rows = serializers.ListField(child=serializers.DictField(), allow_empty=True, default=list)
    mapping = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)
    headers = serializers.ListField(child=serializers.CharField(), required=False)


class ApplyJobSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=ApplyMode.choices)

    def get_fields(self):
        fields = super().get_fields()
        fields["async"] = serializers.BooleanField(required=False, default=False)
        return fields
