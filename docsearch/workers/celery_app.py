"""
Celery Application Factory

Runs the extraction stage: one task per upload, detached from the HTTP
request. Broker: RabbitMQ; result backend: Redis (results are informational,
document state lives in PostgreSQL).

Queue topology:
  documents.extract  — PDF extraction + structuring, one task per upload
  documents.retry    — periodic resubmit of documents stuck in queued or parsing

Task arguments are ids and paths only, never file bytes.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docsearch.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.extract",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.extract",
        durable=True,
    ),
    Queue(
        "documents.retry",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.retry",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docsearch.workers.tasks.extract_document":       {"queue": "documents.extract"},
    "docsearch.workers.tasks.republish_stale_documents": {"queue": "documents.retry"},
}

# Documents parsing longer than this without reaching transform get republished
STALE_PARSING_SECONDS = 15 * 60

# Queued documents whose extraction task never reached a worker
STALE_QUEUED_SECONDS = 10 * 60

# Re-sends per stage before the job gives up and marks the document failed
MAX_RECOVERY_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docsearch")

    app.conf.update(
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # Reject anything that is not JSON
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.extract",
        task_default_exchange="documents",
        task_default_routing_key="documents.extract",

        task_acks_late=True,            # ack only after the task returns
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,   # one extraction at a time per worker process

        task_soft_time_limit=300,
        task_time_limit=360,

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        beat_schedule={
            "republish-stale-documents-every-5m": {
                "task":     "docsearch.workers.tasks.republish_stale_documents",
                "schedule": 300,
                "options":  {"queue": "documents.retry"},
            },
        },

        worker_max_tasks_per_child=200,   # PyMuPDF holds native memory; recycle workers
    )

    app.autodiscover_tasks(["docsearch.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — task lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s owner=%s",
        task_id, task.name,
        kwargs.get("doc_id", "?"),
        kwargs.get("owner_id", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, kwargs.get("doc_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("doc_id", "?"), exception,
        exc_info=True,
    )
