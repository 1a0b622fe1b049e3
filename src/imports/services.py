"""
Import job pipeline: create, stage, apply and roll back supplier files.

A job moves ``staging -> applying -> done | error -> rolled_back``. Rows are
staged in chunks, then applied one transaction per row so that a crash
leaves every row either untouched (``staging``) or terminal. Each applied row
keeps the snapshot needed to undo it; rollback replays those snapshots in
reverse order inside a single transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.db import DatabaseError, DataError, IntegrityError, InterfaceError, OperationalError, transaction
from django.db.models import F, Max
from django.utils import timezone

from catalog.models import Product
from catalog.rollup import RollupBatchResult, process_rollup_queue, request_rollup
from catalog.services import restore_product_snapshot
from core.services import create_audit_log
from suppliers.models import SupplierOffer
from suppliers.services import restore_offer_snapshot

from .exceptions import (
    ImportJobAborted,
    ImportJobStateError,
    ImportMappingError,
    ImportPipelineError,
    ImportRollbackFailed,
    RowApplicationError,
)
from .fields import ImportKind, get_dictionary
from .mapping import MappingResult, auto_detect_mapping, load_mapping_template, map_row, validate_mapping
from .models import ImportJob, ImportJobRow
from .modes import ApplyStrategy, get_strategy
from .parsing import ParsedFile, parse_import_file
from .validation import clean_row, validate_row

logger = logging.getLogger("catalog_engine")

Status = ImportJob.Status
RowStatus = ImportJobRow.Status


# =========================================================================
# REPORTS
# =========================================================================

@dataclass
class ImportReport:
    job_id: str
    status: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    rollups_recomputed: int = 0
    total_rows: int = 0
    ok_rows: int = 0
    details: list[str] = field(default_factory=list)

    @classmethod
    def from_job(cls, job: ImportJob, skipped: int = 0) -> "ImportReport":
        return cls(
            job_id=str(job.pk),
            status=job.status,
            created=job.created_count,
            updated=job.updated_count,
            skipped=skipped,
            errors=job.error_rows,
            rollups_recomputed=job.rollups_recomputed,
            total_rows=job.total_rows,
            ok_rows=job.ok_rows,
            details=list(job.details or []),
        )

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "rollups_recomputed": self.rollups_recomputed,
            "details": list(self.details),
        }


@dataclass
class RollbackReport:
    job_id: str
    rows_rolled_back: int = 0
    products_deleted: int = 0
    products_restored: int = 0
    offers_restored: int = 0
    offers_deleted: int = 0
    rollups_recomputed: int = 0

    def as_dict(self) -> dict:
        return {
            "rows_rolled_back": self.rows_rolled_back,
            "products_deleted": self.products_deleted,
            "products_restored": self.products_restored,
            "offers_restored": self.offers_restored,
            "offers_deleted": self.offers_deleted,
        }


@dataclass
class UploadResult:
    job: ImportJob
    parsed: ParsedFile
    mapping: MappingResult
    staged: int = 0
    report: ImportReport | None = None


def get_import_report(job: ImportJob) -> ImportReport:
    """Report built from the counters stored on ``job``."""
    job.refresh_from_db()
    return ImportReport.from_job(job)


# =========================================================================
# CREATE / STAGE
# =========================================================================

def create_import_job(
    filename: str,
    *,
    supplier=None,
    kind: str = ImportKind.CATALOGUE,
    total_rows: int = 0,
    mapping: dict[str, str] | None = None,
    actor=None,
) -> ImportJob:
    """Create a job in ``staging`` and log it in the audit trail."""
    dictionary = get_dictionary(kind)
    mapping = {key: column for key, column in (mapping or {}).items() if column}
    if mapping:
        validate_mapping(mapping, dictionary)

    job = ImportJob.objects.create(
        filename=(filename or "")[:255],
        supplier=supplier,
        kind=dictionary.kind,
        mapping=mapping,
        total_rows=total_rows,
        created_by=actor if getattr(actor, "is_authenticated", False) else None,
    )
    create_audit_log(
        actor=actor,
        action="IMPORT_JOB_CREATED",
        entity_type="ImportJob",
        entity_id=job.pk,
        after={
            "filename": job.filename,
            "kind": job.kind,
            "supplier": getattr(supplier, "code", None),
            "total_rows": total_rows,
        },
    )
    logger.info("Import job %s created for %s (%s).", job.pk, job.filename, job.kind)
    return job


def _refresh_total_rows(job: ImportJob) -> int:
    total = job.rows.count()
    ImportJob.objects.filter(pk=job.pk).update(total_rows=total, updated_at=timezone.now())
    job.total_rows = total
    return total


def update_job_mapping(job: ImportJob, mapping: dict[str, str], headers: list[str] | None = None) -> list[str]:
    """Replace the working mapping of a staging job and re-map its staged rows.

    Returns the required keys the new mapping still misses.
    """
    job = ImportJob.objects.get(pk=job.pk)
    if job.status != Status.STAGING:
        raise ImportJobStateError("Le mapping ne peut etre modifie qu'avant l'application de l'import.")
    mapping = {key: column for key, column in mapping.items() if column}
    missing = validate_mapping(mapping, get_dictionary(job.kind), headers)

    with transaction.atomic():
        job.mapping = mapping
        job.save(update_fields=["mapping", "updated_at"])
        rows = list(job.rows.only("pk", "raw_data"))
        for row in rows:
            row.mapped_data = map_row(row.raw_data, mapping)
        ImportJobRow.objects.bulk_update(rows, ["mapped_data"], batch_size=settings.IMPORT_STAGE_CHUNK_SIZE)
    return missing


def stage_import_rows(
    job: ImportJob,
    rows,
    *,
    mapping: dict[str, str] | None = None,
    chunk_size: int | None = None,
) -> int:
    """Append raw ``{column: value}`` rows to a staging job.

    Rows are inserted in chunks, one transaction per chunk. If a chunk fails
    the chunks before it stay committed and :class:`ImportPipelineError` is
    raised. Returns the number of rows staged.
    """
    job = ImportJob.objects.get(pk=job.pk)
    if job.status != Status.STAGING:
        raise ImportJobStateError("Les lignes ne peuvent etre ajoutees qu'a un import en preparation.")

    if mapping is not None:
        mapping = {key: column for key, column in mapping.items() if column}
        validate_mapping(mapping, get_dictionary(job.kind))
        job.mapping = mapping
        job.save(update_fields=["mapping", "updated_at"])
    if not job.mapping:
        raise ImportMappingError("Aucun mapping de colonnes defini pour cet import.")

    chunk_size = chunk_size or settings.IMPORT_STAGE_CHUNK_SIZE
    rows = list(rows)
    start = job.rows.aggregate(last=Max("row_index"))["last"] or 0
    staged = 0

    for offset in range(0, len(rows), chunk_size):
        chunk = rows[offset:offset + chunk_size]
        objs = [
            ImportJobRow(
                job=job,
                row_index=start + offset + position + 1,
                raw_data={str(k): ("" if v is None else str(v)) for k, v in raw.items()},
                mapped_data=map_row(raw, job.mapping),
            )
            for position, raw in enumerate(chunk)
        ]
        try:
            with transaction.atomic():
                ImportJobRow.objects.bulk_create(objs)
        except DatabaseError as exc:
            logger.error(
                "Staging failed for job %s at rows %d-%d: %s",
                job.pk,
                objs[0].row_index,
                objs[-1].row_index,
                exc,
            )
            _refresh_total_rows(job)
            raise ImportPipelineError(
                f"Echec de l'enregistrement des lignes {objs[0].row_index} a {objs[-1].row_index} : {exc}. "
                f"{staged} ligne(s) deja enregistree(s)."
            ) from exc
        staged += len(objs)

    _refresh_total_rows(job)
    logger.info("Import job %s: %d row(s) staged.", job.pk, staged)
    return staged


# =========================================================================
# APPLY
# =========================================================================

@dataclass
class _RowResult:
    status: str
    product_id: object = None
    created: bool = False


def _mark_row_failed(job: ImportJob, row: ImportJobRow, status: str, messages: list[str]) -> _RowResult:
    row.status = status
    row.error_messages = messages
    row.save(update_fields=["status", "error_messages", "updated_at"])
    ImportJob.objects.filter(pk=job.pk).update(error_rows=F("error_rows") + 1)
    return _RowResult(status=status)


def _apply_row(job: ImportJob, row_pk: int, strategy: ApplyStrategy, dictionary, seen_at) -> _RowResult:
    """Apply one staged row in its own transaction."""
    with transaction.atomic():
        row = ImportJobRow.objects.select_for_update().get(pk=row_pk)
        if row.status != RowStatus.STAGING:
            return _RowResult(status="skipped")

        errors = validate_row(row.mapped_data, dictionary)
        if errors:
            return _mark_row_failed(job, row, RowStatus.INVALID, errors)

        cleaned = clean_row(row.mapped_data, dictionary)
        try:
            with transaction.atomic():
                outcome = strategy.apply_row(job, cleaned, seen_at=seen_at)
        except RowApplicationError as exc:
            return _mark_row_failed(job, row, RowStatus.ERROR, [str(exc)])
        except (IntegrityError, DataError) as exc:
            logger.warning("Import job %s row %d rejected by the database: %s", job.pk, row.row_index, exc)
            return _mark_row_failed(job, row, RowStatus.ERROR, [f"Erreur d'enregistrement : {exc}"])

        row.status = RowStatus.APPLIED
        row.error_messages = []
        row.product = outcome.product
        row.previous_snapshot = outcome.previous_snapshot
        row.product_created = outcome.product_created
        row.offer = outcome.offer
        row.previous_offer_snapshot = outcome.previous_offer_snapshot
        row.offer_created = outcome.offer_created
        row.save()

        counter = "created_count" if outcome.product_created else "updated_count"
        ImportJob.objects.filter(pk=job.pk).update(
            ok_rows=F("ok_rows") + 1,
            **{counter: F(counter) + 1},
        )
        return _RowResult(status=RowStatus.APPLIED, product_id=outcome.product.pk, created=outcome.product_created)


def _abort_job(job: ImportJob, exc: Exception) -> None:
    try:
        ImportJob.objects.filter(pk=job.pk).update(
            status=Status.ERROR,
            error_message=str(exc)[:2000],
            updated_at=timezone.now(),
        )
    except DatabaseError:
        logger.exception("Import job %s: could not record the abort.", job.pk)


def _collect_details(job: ImportJob, rollups: RollupBatchResult) -> list[str]:
    limit = settings.IMPORT_REPORT_MAX_DETAILS
    details = []
    failed = (
        job.rows.filter(status__in=[RowStatus.INVALID, RowStatus.ERROR])
        .order_by("row_index")
        .values_list("row_index", "error_messages")[:limit]
    )
    for row_index, messages in failed:
        details.append(f"Ligne {row_index} : {'; '.join(messages or [])}")
    for product_id, message in rollups.failures:
        if len(details) >= limit:
            break
        details.append(f"Recalcul du prix en echec pour le produit {product_id} : {message}")
    return details[:limit]


def apply_import_job(job: ImportJob, *, mode, actor=None) -> ImportReport:
    """Apply every staged row of ``job`` with the strategy of ``mode``.

    Rows are read in ``row_index`` order, ``IMPORT_APPLY_BATCH_SIZE`` at a
    time, and each one is committed on its own. Invalid or failing rows are
    recorded on the row and do not stop the job. Rollups of the touched
    products are recomputed once the rows are committed.

    Raises:
        ImportJobStateError: unknown mode, mode/kind mismatch, or a rolled
            back job.
        ImportMappingError: the job mapping misses a required field.
        ImportJobAborted: the database connection failed mid-run; the job is
            left in ``error`` and can be applied again.
    """
    strategy = get_strategy(mode)

    with transaction.atomic():
        job = ImportJob.objects.select_for_update().get(pk=job.pk)
        if job.status == Status.DONE:
            logger.info("Import job %s already applied; nothing to do.", job.pk)
            return ImportReport.from_job(job)
        if job.status == Status.ROLLED_BACK:
            raise ImportJobStateError("Cet import a ete annule et ne peut plus etre applique.")
        if job.mode and job.mode != strategy.mode and job.ok_rows + job.error_rows > 0:
            raise ImportJobStateError(f"Cet import a deja ete lance en mode {job.mode}.")
        strategy.check_job(job)

        dictionary = get_dictionary(job.kind)
        missing = validate_mapping(job.mapping or {}, dictionary)
        if missing:
            labels = ", ".join(dictionary.get(key).label for key in missing)
            raise ImportMappingError(f"Champs requis non mappes : {labels}.", missing=missing)

        job.status = Status.APPLYING
        job.mode = strategy.mode
        job.error_message = ""
        job.save(update_fields=["status", "mode", "error_message", "updated_at"])

    # Related supplier is read by the strategies on every row.
    job = ImportJob.objects.select_related("supplier").get(pk=job.pk)
    logger.info("Applying import job %s (%s, mode=%s).", job.pk, job.filename, job.mode)

    batch_size = settings.IMPORT_APPLY_BATCH_SIZE
    seen_at = timezone.now()
    touched: set = set()
    skipped = 0
    last_index = 0

    try:
        while True:
            batch = list(
                job.rows.filter(row_index__gt=last_index)
                .order_by("row_index")
                .values_list("pk", "row_index", "status")[:batch_size]
            )
            if not batch:
                break
            for row_pk, row_index, row_status in batch:
                last_index = row_index
                if row_status != RowStatus.STAGING:
                    skipped += 1
                    continue
                result = _apply_row(job, row_pk, strategy, dictionary, seen_at)
                if result.status == "skipped":
                    skipped += 1
                elif result.product_id is not None:
                    touched.add(result.product_id)
    except (OperationalError, InterfaceError) as exc:
        logger.error("Import job %s aborted after row %d: %s", job.pk, last_index, exc, exc_info=True)
        _abort_job(job, exc)
        raise ImportJobAborted(
            f"Import interrompu (ligne {last_index}) : {exc}. Les lignes deja appliquees sont conservees."
        ) from exc
    except Exception as exc:
        logger.exception("Import job %s failed on row %d.", job.pk, last_index)
        _abort_job(job, exc)
        raise ImportJobAborted(
            f"Erreur inattendue (ligne {last_index}) : {exc}. Les lignes deja appliquees sont conservees."
        ) from exc

    rollups = process_rollup_queue(touched) if touched else RollupBatchResult()

    with transaction.atomic():
        job = ImportJob.objects.select_for_update().get(pk=job.pk)
        job.total_rows = job.rows.count()
        job.rollups_recomputed = job.rollups_recomputed + rollups.recomputed
        job.details = _collect_details(job, rollups)
        job.status = Status.DONE
        job.applied_at = timezone.now()
        job.save()

    report = ImportReport.from_job(job, skipped=skipped)
    create_audit_log(
        actor=actor,
        action="IMPORT_JOB_APPLIED",
        entity_type="ImportJob",
        entity_id=job.pk,
        after={"mode": job.mode, **report.as_dict()},
    )
    logger.info(
        "Import job %s applied: %d created, %d updated, %d error(s), %d skipped, %d rollup(s).",
        job.pk,
        report.created,
        report.updated,
        report.errors,
        report.skipped,
        rollups.recomputed,
    )
    return report


# =========================================================================
# ROLLBACK
# =========================================================================

def _rollback_row(row: ImportJobRow, products: dict, report: RollbackReport, rollup_ids: set, restored: set) -> None:
    if row.offer_id is not None:
        offer = SupplierOffer.objects.select_for_update().filter(pk=row.offer_id).first()
        if offer is not None:
            if row.offer_created:
                offer.delete()
                report.offers_deleted += 1
                if not row.product_created:
                    request_rollup(offer.product_id, reason="import_rollback")
                    rollup_ids.add(offer.product_id)
            elif row.previous_offer_snapshot is not None:
                restore_offer_snapshot(offer, row.previous_offer_snapshot)
                report.offers_restored += 1
                rollup_ids.add(offer.product_id)
    elif row.previous_offer_snapshot is not None and not row.offer_created:
        raise ImportRollbackFailed(f"Ligne {row.row_index} : offre introuvable, annulation impossible.")

    if row.product_created:
        product = products.pop(row.product_id, None)
        if product is not None:
            product.delete()
            report.products_deleted += 1
            rollup_ids.discard(row.product_id)
            restored.discard(row.product_id)
        return

    product = products.get(row.product_id)
    if product is None:
        raise ImportRollbackFailed(f"Ligne {row.row_index} : produit introuvable, annulation impossible.")
    restore_product_snapshot(product, row.previous_snapshot or {})
    restored.add(product.pk)


def rollback_import_job(job: ImportJob, *, actor=None) -> RollbackReport:
    """Undo every applied row of ``job`` in one transaction.

    Rows are replayed in descending ``row_index``: offers get their previous
    values back (or are deleted when the row created them), then products.

    Raises:
        ImportJobStateError: the job is not ``done``/``error`` or applied
            nothing. Checked before any change.
        ImportRollbackFailed: a product or offer to restore no longer exists;
            nothing was changed.
    """
    rollup_ids: set = set()
    try:
        with transaction.atomic():
            job = ImportJob.objects.select_for_update().get(pk=job.pk)
            if job.status not in ImportJob.ROLLBACKABLE_STATUSES:
                raise ImportJobStateError(
                    f"Impossible d'annuler un import au statut {job.get_status_display()}."
                )
            if job.ok_rows == 0:
                raise ImportJobStateError("Aucune ligne appliquee a annuler.")

            rows = list(
                job.rows.select_for_update()
                .filter(status=RowStatus.APPLIED)
                .order_by("-row_index")
            )
            product_ids = {row.product_id for row in rows if row.product_id is not None}
            products = {
                product.pk: product
                for product in Product.objects.select_for_update().filter(pk__in=product_ids).order_by("pk")
            }

            report = RollbackReport(job_id=str(job.pk))
            restored: set = set()
            for row in rows:
                _rollback_row(row, products, report, rollup_ids, restored)
                report.rows_rolled_back += 1
            report.products_restored = len(restored)

            ImportJobRow.objects.filter(pk__in=[row.pk for row in rows]).update(
                status=RowStatus.ROLLED_BACK,
                updated_at=timezone.now(),
            )
            before = {"status": job.status}
            job.status = Status.ROLLED_BACK
            job.rolled_back_at = timezone.now()
            job.save(update_fields=["status", "rolled_back_at", "updated_at"])
            create_audit_log(
                actor=actor,
                action="IMPORT_JOB_ROLLED_BACK",
                entity_type="ImportJob",
                entity_id=job.pk,
                before=before,
                after=report.as_dict(),
            )
    except DatabaseError as exc:
        logger.error("Rollback of import job %s failed: %s", job.pk, exc, exc_info=True)
        raise ImportRollbackFailed(f"Annulation impossible : {exc}") from exc

    if rollup_ids:
        report.rollups_recomputed = process_rollup_queue(rollup_ids).recomputed
    logger.info(
        "Import job %s rolled back: %d row(s), %d product(s) deleted, %d restored.",
        job.pk,
        report.rows_rolled_back,
        report.products_deleted,
        report.products_restored,
    )
    return report


# =========================================================================
# ONE-SHOT
# =========================================================================

def run_supplier_file_import(
    fileobj,
    *,
    filename: str | None = None,
    supplier=None,
    kind: str = ImportKind.CATALOGUE,
    template=None,
    mapping: dict[str, str] | None = None,
    apply_mode=None,
    actor=None,
) -> UploadResult:
    """Parse a supplier file, create and stage a job, and optionally apply it.

    The mapping comes from ``mapping`` if given, else from ``template``, else
    from header auto-detection. When required fields are left unmapped the
    job is still staged so the mapping can be fixed before applying.
    """
    filename = filename or getattr(fileobj, "name", "") or "import"
    parsed = parse_import_file(fileobj, filename)
    dictionary = get_dictionary(kind)

    if mapping:
        detected = MappingResult(mapping={k: v for k, v in mapping.items() if v})
        detected.missing_required = validate_mapping(detected.mapping, dictionary, parsed.headers)
    elif template is not None:
        if template.kind != dictionary.kind:
            raise ImportMappingError("Le modele de mapping ne correspond pas au type d'import.")
        detected = MappingResult(mapping=load_mapping_template(template, parsed.headers))
        detected.missing_required = validate_mapping(detected.mapping, dictionary)
    else:
        detected = auto_detect_mapping(parsed.headers, dictionary)
    mapped_columns = set(detected.mapping.values())
    detected.unmapped_headers = [h for h in parsed.headers if h not in mapped_columns]

    job = create_import_job(
        filename,
        supplier=supplier,
        kind=dictionary.kind,
        total_rows=parsed.total_rows,
        mapping=detected.mapping,
        actor=actor,
    )
    result = UploadResult(job=job, parsed=parsed, mapping=detected)
    if not detected.mapping:
        logger.warning("Import job %s: no column could be mapped.", job.pk)
        return result

    result.staged = stage_import_rows(job, parsed.rows)
    if apply_mode:
        if detected.missing_required:
            labels = ", ".join(dictionary.get(key).label for key in detected.missing_required)
            raise ImportMappingError(
                f"Champs requis non mappes : {labels}.",
                missing=detected.missing_required,
            )
        result.report = apply_import_job(job, mode=apply_mode, actor=actor)
    result.job.refresh_from_db()
    return result
