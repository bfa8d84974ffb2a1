# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
#
# The broker (Redis db 0) queues tasks. Workers consume and execute them.
# Results are stored in Redis db 1. The authoritative progress signal is
# the filing's ingestion_status, not the task result.
# =============================================================================

from celery import Celery
from celery.signals import setup_logging

from filing_rag.config import settings
from filing_rag.logging_config import configure_logging

celery_app = Celery(
    "filing_rag.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: pickle can execute arbitrary code during deserialization.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's task is re-queued.
    # A re-queued run finds the filing mid-ingestion and is rejected by the
    # status guard; the filing must then be re-triggered after it fails.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One long-running ingestion per worker process at a time
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # Large scanned filings can OCR for several minutes
    task_soft_time_limit=600,
    task_time_limit=900,

    # --- Results ---
    result_expires=3600,

    include=["filing_rag.workers.tasks"],
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # Replace Celery's logging setup with the same handler the API uses
    configure_logging(settings.log_level)
