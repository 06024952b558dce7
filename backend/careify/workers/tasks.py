"""
Celery Tasks — Document Pipeline

Task: process_document
  Runs DocumentService.process() for one uploaded document.

Task: reprocess_document
  Resets the document to `uploaded` and runs the pipeline again; a new
  ExtractionVersion is written when extraction succeeds.

Each task run builds its own Database handle and disposes it afterwards.
The pipeline never raises for model failures; anything that escapes it
(database or broker trouble) is retried with Celery's backoff.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from celery import Task

from careify.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@celery_app.task(
    name="careify.workers.tasks.process_document",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    try:
        return run_async(_run(uuid.UUID(document_id), reprocess=False))
    except Exception as exc:
        logger.exception("Processing task error | doc=%s", document_id)
        raise self.retry(exc=exc)


@celery_app.task(
    name="careify.workers.tasks.reprocess_document",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def reprocess_document(self: Task, *, document_id: str) -> dict[str, Any]:
    try:
        return run_async(_run(uuid.UUID(document_id), reprocess=True))
    except Exception as exc:
        logger.exception("Reprocessing task error | doc=%s", document_id)
        raise self.retry(exc=exc)


async def _run(document_id: uuid.UUID, *, reprocess: bool) -> dict[str, Any]:
    from careify.db.session import Database
    from careify.services.documents import build_document_service

    db = Database.from_settings()
    try:
        service = build_document_service(db)
        result = await (service.reprocess(document_id) if reprocess else service.process(document_id))
    finally:
        await db.dispose()

    logger.info(
        "Pipeline task done | doc=%s success=%s errors=%s",
        document_id, result.success, result.errors,
    )
    return result.model_dump(mode="json")
