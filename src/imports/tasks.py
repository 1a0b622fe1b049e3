"""Celery tasks for supplier imports."""
from __future__ import annotations

import logging

from celery import shared_task

logger = logging.getLogger("catalog_engine")


@shared_task(bind=True, name="imports.tasks.apply_import_job", max_retries=3, default_retry_delay=60)
def apply_import_job(self, job_id: str, mode: str, actor_id=None):
    """Apply a staged import job in the background.

    A connection failure leaves the job in ``error`` with its applied rows
    kept; the retry resumes from the first row still in ``staging``.
    """
    from django.contrib.auth import get_user_model
    from django.db import InterfaceError, OperationalError

    from imports.exceptions import ImportJobAborted
    from imports.models import ImportJob
    from imports.services import apply_import_job as _apply

    job = ImportJob.objects.get(pk=job_id)
    actor = get_user_model().objects.filter(pk=actor_id).first() if actor_id else None
    try:
        report = _apply(job, mode=mode, actor=actor)
    except ImportJobAborted as exc:
        if not isinstance(exc.__cause__, (OperationalError, InterfaceError)):
            raise
        logger.warning("Import job %s aborted, retrying: %s", job_id, exc)
        raise self.retry(exc=exc)
    return report.as_dict()
