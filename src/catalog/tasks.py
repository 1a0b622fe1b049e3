"""Celery tasks for the catalog app."""
import logging

from celery import shared_task

logger = logging.getLogger("catalog_engine")


@shared_task(name="catalog.tasks.drain_rollup_queue")
def drain_rollup_queue(limit=1000):
    """Retry pending and failed rollup requests.

    Runs every few minutes via Celery Beat. Requests that fail again stay in
    the queue with their ``attempts`` counter incremented.
    """
    from catalog.rollup import process_rollup_queue

    result = process_rollup_queue(limit=limit)
    return {"recomputed": result.recomputed, "failed": result.failed}


@shared_task(name="catalog.tasks.nightly_rollup_sweep")
def nightly_rollup_sweep():
    """Deactivate ghost offers, then recompute every active product.

    The full sweep catches products whose rollup drifted, e.g. after a
    coefficient change, which does not touch any offer.
    """
    from catalog.rollup import recompute_all_rollups
    from suppliers.services import deactivate_ghost_offers

    ghosts = deactivate_ghost_offers()
    result = recompute_all_rollups()
    logger.info(
        "Nightly rollup sweep: %d recomputed, %d failed, ghost offers %s.",
        result.recomputed,
        result.failed,
        ghosts,
    )
    return {
        "ghost_offers": ghosts,
        "recomputed": result.recomputed,
        "failed": result.failed,
    }
