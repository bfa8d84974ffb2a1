# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
# Runs filing ingestion outside the request cycle:
#   - celery_app.py: Celery application configuration
#   - tasks.py: ingest_filing / embed_filing_chunks tasks
#
# WHY CELERY?
# Ingestion involves slow steps: OCR of scanned pages (CPU-bound, seconds
# per page) and batched embedding calls (network-bound). The API returns
# as soon as the task is queued; clients poll GET /filings for the status.
# =============================================================================
