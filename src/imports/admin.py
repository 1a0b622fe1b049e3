"""Admin configuration for the imports app."""
from django.contrib import admin, messages

from .exceptions import ImportPipelineError
from .models import ImportJob, ImportJobRow, ImportMappingTemplate
from .services import rollback_import_job


class ImportJobRowInline(admin.TabularInline):
    model = ImportJobRow
    fields = ("row_index", "status", "error_messages", "product", "product_created", "offer_created")
    readonly_fields = fields
    extra = 0
    can_delete = False
    show_change_link = False
    max_num = 0

    def get_queryset(self, request):
        # Applied rows are left out; a job can hold thousands of them.
        return super().get_queryset(request).exclude(status=ImportJobRow.Status.APPLIED)


@admin.register(ImportJob)
class ImportJobAdmin(admin.ModelAdmin):
    list_display = (
        "filename",
        "supplier",
        "kind",
        "mode",
        "status",
        "total_rows",
        "ok_rows",
        "error_rows",
        "created_at",
    )
    list_filter = ("status", "kind", "mode", "supplier")
    search_fields = ("filename",)
    list_select_related = ("supplier", "created_by")
    readonly_fields = (
        "id",
        "status",
        "total_rows",
        "ok_rows",
        "error_rows",
        "created_count",
        "updated_count",
        "rollups_recomputed",
        "details",
        "error_message",
        "applied_at",
        "rolled_back_at",
        "created_by",
        "created_at",
        "updated_at",
    )
    inlines = [ImportJobRowInline]
    actions = ["rollback_jobs"]

    @admin.action(description="Annuler les imports selectionnes")
    def rollback_jobs(self, request, queryset):
        for job in queryset:
            try:
                report = rollback_import_job(job, actor=request.user)
            except ImportPipelineError as exc:
                self.message_user(request, f"{job.filename} : {exc}", level=messages.ERROR)
                continue
            self.message_user(
                request,
                f"{job.filename} : {report.rows_rolled_back} ligne(s) annulee(s), "
                f"{report.products_deleted} produit(s) supprime(s).",
            )


@admin.register(ImportMappingTemplate)
class ImportMappingTemplateAdmin(admin.ModelAdmin):
    list_display = ("name", "supplier", "kind", "updated_at")
    list_filter = ("kind", "supplier")
    search_fields = ("name",)
    readonly_fields = ("id", "created_at", "updated_at")
