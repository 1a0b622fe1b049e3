"""ViewSets for the catalogue back-office API v1."""
import logging

from django.db import transaction
from django.db.models import Count
from django.db.models.deletion import ProtectedError
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.generics import get_object_or_404
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from catalog.models import PricingCoefficient, Product
from catalog.rollup import process_rollup_queue, request_rollup
from core.services import create_audit_log
from imports.exceptions import ImportJobAborted, ImportJobStateError, ImportMappingError, ImportPipelineError
from imports.fields import ImportKind, get_dictionary
from imports.mapping import auto_detect_mapping, save_mapping_template
from imports.models import ImportJob, ImportJobRow, ImportMappingTemplate
from imports.modes import get_strategy
from imports.parsing import parse_import_file
from imports.services import (
    apply_import_job,
    create_import_job,
    get_import_report,
    rollback_import_job,
    run_supplier_file_import,
    stage_import_rows,
    update_job_mapping,
)
from imports.tasks import apply_import_job as apply_import_job_task
from suppliers.models import Supplier, SupplierOffer
from suppliers.services import set_offer_active

from .pagination import StandardResultsSetPagination
from .permissions import IsCatalogManager, IsCatalogManagerOrReadOnly
from .serializers import (
    ApplyJobSerializer,
    DetectMappingSerializer,
    ImportJobCreateSerializer,
    ImportJobRowSerializer,
    ImportJobSerializer,
    ImportMappingTemplateSerializer,
    ImportUploadSerializer,
    OfferToggleSerializer,
    PricingCoefficientSerializer,
    ProductSerializer,
    StageRowsSerializer,
    SupplierOfferSerializer,
    SupplierSerializer,
)

logger = logging.getLogger("catalog_engine")


def _pipeline_error_response(exc: ImportPipelineError) -> Response:
    """Map an import pipeline failure to an HTTP response."""
    if isinstance(exc, ImportJobStateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ImportJobAborted):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    payload = {"detail": str(exc)}
    if isinstance(exc, ImportMappingError):
        payload["missing"] = exc.missing
        payload["unknown"] = exc.unknown
    return Response(payload, status=code)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

class SupplierViewSet(viewsets.ModelViewSet):
    serializer_class = SupplierSerializer
    queryset = Supplier.objects.all()
    permission_classes = [IsCatalogManagerOrReadOnly]
    filterset_fields = ["is_active"]
    search_fields = ["code", "name", "contact_name"]
    ordering_fields = ["code", "name", "created_at"]

    def perform_destroy(self, instance):
        try:
            instance.delete()
        except ProtectedError:
            raise ValidationError(
                {"detail": "Impossible de supprimer ce fournisseur : des offres ou imports y sont rattaches. Desactivez-le a la place."}
            )


class SupplierOfferViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = SupplierOfferSerializer
    queryset = SupplierOffer.objects.select_related("supplier", "product")
    permission_classes = [IsCatalogManagerOrReadOnly]
    filterset_fields = ["product", "supplier", "is_active", "is_preferred"]
    search_fields = ["supplier_reference", "product__name", "product__ean"]
    ordering_fields = ["priority_rank", "purchase_price_ht", "stock_qty", "last_seen_at", "updated_at"]

    @action(detail=True, methods=["post"], url_path="toggle-active", permission_classes=[IsCatalogManager])
    def toggle_active(self, request, pk=None):
        """Switch an offer on or off and recompute its product rollup."""
        offer = self.get_object()
        serializer = OfferToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        is_active = serializer.validated_data["is_active"]
        if is_active is None:
            is_active = not offer.is_active

        offer, result = set_offer_active(offer, is_active, actor=request.user)
        offer = self.get_queryset().get(pk=offer.pk)
        return Response({
            "offer": SupplierOfferSerializer(offer).data,
            "product": ProductSerializer(offer.product).data,
            "rollup_failed": bool(result.failed),
        })


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class PricingCoefficientViewSet(viewsets.ModelViewSet):
    """Coefficients used when no supplier gives a public price.

    Every change is written to the audit log; affected products pick the new
    value up at the next rollup recompute.
    """

    serializer_class = PricingCoefficientSerializer
    queryset = PricingCoefficient.objects.all()
    permission_classes = [IsCatalogManagerOrReadOnly]
    filterset_fields = ["family", "sub_family"]
    search_fields = ["family", "sub_family"]
    ordering_fields = ["family", "sub_family", "multiplier"]
    pagination_class = StandardResultsSetPagination

    @staticmethod
    def _state(instance):
        return {"family": instance.family, "sub_family": instance.sub_family, "multiplier": instance.multiplier}

    def perform_create(self, serializer):
        instance = serializer.save()
        create_audit_log(self.request.user, "COEFFICIENT_CREATED", "PricingCoefficient", instance.pk, after=self._state(instance))

    def perform_update(self, serializer):
        before = self._state(serializer.instance)
        instance = serializer.save()
        create_audit_log(
            self.request.user,
            "COEFFICIENT_UPDATED",
            "PricingCoefficient",
            instance.pk,
            before=before,
            after=self._state(instance),
        )

    def perform_destroy(self, instance):
        before = self._state(instance)
        pk = instance.pk
        instance.delete()
        create_audit_log(self.request.user, "COEFFICIENT_DELETED", "PricingCoefficient", pk, before=before)


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    """Products with their rolled-up public price and availability."""

    serializer_class = ProductSerializer
    queryset = Product.objects.annotate(offers_count=Count("offers"))
    permission_classes = [IsCatalogManagerOrReadOnly]
    filterset_fields = ["family", "sub_family", "brand", "is_active", "is_available", "public_price_source"]
    search_fields = ["name", "ean", "sku", "manufacturer_ref"]
    ordering_fields = ["name", "public_price_ttc", "available_qty_total", "updated_at"]

    @action(detail=True, methods=["post"], url_path="recompute-rollup", permission_classes=[IsCatalogManager])
    def recompute_rollup(self, request, pk=None):
        product = self.get_object()
        with transaction.atomic():
            request_rollup(product.pk, reason="manual")
        result = process_rollup_queue([product.pk])
        if result.failed:
            _product_id, error = result.failures[0]
            return Response(
                {"detail": f"Recalcul en echec : {error}"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        product = self.get_queryset().get(pk=product.pk)
        return Response(ProductSerializer(product).data)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

class ImportMappingTemplateViewSet(viewsets.ModelViewSet):
    serializer_class = ImportMappingTemplateSerializer
    queryset = ImportMappingTemplate.objects.select_related("supplier")
    permission_classes = [IsCatalogManager]
    filterset_fields = ["supplier", "kind"]
    search_fields = ["name"]
    ordering_fields = ["name", "updated_at"]

    def perform_create(self, serializer):
        data = serializer.validated_data
        try:
            serializer.instance = save_mapping_template(
                data["name"],
                data.get("mapping", {}),
                kind=data.get("kind", ImportKind.CATALOGUE),
                supplier=data.get("supplier"),
            )
        except ImportMappingError as exc:
            raise ValidationError({"mapping": str(exc)})


class ImportJobViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """Staged supplier imports.

    - ``upload``: parse a file, detect or load the mapping, stage the rows
      and optionally apply them in one call.
    - ``stage`` / ``apply`` / ``rollback``: drive an existing job step by step.
    - ``rows``: inspect staged rows, e.g. ``?status=invalid``.
    """

    serializer_class = ImportJobSerializer
    queryset = ImportJob.objects.select_related("supplier", "created_by")
    permission_classes = [IsCatalogManager]
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    throttle_scope = None
    filterset_fields = ["status", "kind", "mode", "supplier"]
    search_fields = ["filename"]
    ordering_fields = ["created_at", "applied_at", "status"]

    def create(self, request, *args, **kwargs):
        serializer = ImportJobCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            job = create_import_job(
                data["filename"],
                supplier=data.get("supplier"),
                kind=data["kind"],
                mapping=data.get("mapping"),
                actor=request.user,
            )
        except ImportPipelineError as exc:
            return _pipeline_error_response(exc)
        return Response(ImportJobSerializer(job).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], throttle_scope="imports_upload")
    def upload(self, request):
        serializer = ImportUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        uploaded = data["file"]

        try:
            result = run_supplier_file_import(
                uploaded,
                filename=uploaded.name,
                supplier=data.get("supplier"),
                kind=data["kind"],
                template=data.get("template"),
                apply_mode=data.get("apply_mode") or None,
                actor=request.user,
            )
        except ImportPipelineError as exc:
            return _pipeline_error_response(exc)

        return Response(
            {
                "job": ImportJobSerializer(result.job).data,
                "headers": result.parsed.headers,
                "preview": result.parsed.preview,
                "staged": result.staged,
                **result.mapping.as_dict(),
                "report": result.report.as_dict() if result.report else None,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["post"], url_path="detect-mapping")
    def detect_mapping(self, request):
        serializer = DetectMappingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        preview = []
        headers = data.get("headers") or []
        if data.get("file"):
            try:
                parsed = parse_import_file(data["file"])
            except ImportPipelineError as exc:
                return _pipeline_error_response(exc)
            headers, preview = parsed.headers, parsed.preview

        result = auto_detect_mapping(headers, get_dictionary(data["kind"]))
        return Response({"headers": headers, "preview": preview, **result.as_dict()})

    @action(detail=True, methods=["post"])
    def stage(self, request, pk=None):
        job = self.get_object()
        serializer = StageRowsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        missing = []
        try:
            if "mapping" in data:
                missing = update_job_mapping(job, data["mapping"], data.get("headers"))
            staged = stage_import_rows(job, data["rows"]) if data["rows"] else 0
        except ImportPipelineError as exc:
            return _pipeline_error_response(exc)

        job.refresh_from_db()
        return Response({"staged": staged, "missing_required": missing, "job": ImportJobSerializer(job).data})

    @action(detail=True, methods=["post"])
    def apply(self, request, pk=None):
        job = self.get_object()
        serializer = ApplyJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        mode = serializer.validated_data["mode"]

        if serializer.validated_data["async"]:
            try:
                get_strategy(mode).check_job(job)
            except ImportPipelineError as exc:
                return _pipeline_error_response(exc)
            if job.status == ImportJob.Status.ROLLED_BACK:
                return _pipeline_error_response(
                    ImportJobStateError("Cet import a ete annule et ne peut plus etre applique.")
                )
            task = apply_import_job_task.delay(str(job.pk), mode, request.user.pk)
            logger.info("Import job %s queued for apply (task %s).", job.pk, task.id)
            return Response({"job": str(job.pk), "task_id": task.id}, status=status.HTTP_202_ACCEPTED)

        try:
            report = apply_import_job(job, mode=mode, actor=request.user)
        except ImportPipelineError as exc:
            return _pipeline_error_response(exc)
        return Response({"job": str(job.pk), "status": report.status, **report.as_dict()})

    @action(detail=True, methods=["post"])
    def rollback(self, request, pk=None):
        job = self.get_object()
        try:
            report = rollback_import_job(job, actor=request.user)
        except ImportPipelineError as exc:
            return _pipeline_error_response(exc)
        return Response({"job": str(job.pk), **report.as_dict()})

    @action(detail=True, methods=["get"])
    def report(self, request, pk=None):
        job = self.get_object()
        report = get_import_report(job)
        return Response({"job": str(job.pk), "status": report.status, **report.as_dict()})

    @action(detail=True, methods=["get"])
    def rows(self, request, pk=None):
        # ?status= filters rows here, not jobs; skip the list filter backends.
        job = get_object_or_404(self.get_queryset(), pk=pk)
        self.check_object_permissions(request, job)
        qs = job.rows.order_by("row_index")
        row_status = request.query_params.get("status")
        if row_status:
            if row_status not in ImportJobRow.Status.values:
                raise ValidationError({"status": f"Statut inconnu : {row_status}"})
            qs = qs.filter(status=row_status)
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(ImportJobRowSerializer(page, many=True).data)
        return Response(ImportJobRowSerializer(qs, many=True).data)
