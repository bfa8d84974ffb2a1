# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Core components, leaf-first:
#   - extractor.py: PDF/plain-text extraction with OCR fallback + binary guard
#   - chunker.py: sliding-window character chunking with noise-filter policies
#   - embedder.py: batched, validated, role-tagged embedding client
#   - pipeline.py: ingestion orchestrator + standalone embedding sub-flow
#   - retrieval.py: filter normalisation + owner-scoped similarity search
#   - synthesizer.py: grounded prompt, LLM call, citation binding
#   - qa.py: question answering with ownership checks, retrieval, synthesis, query log
#
# Collaborators:
#   - status.py: ingestion status state machine
#   - store.py: FilingStore protocol (pgvector and in-memory backends)
#   - blobstore.py: BlobStore protocol (local disk backend)
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - filings.py: upload / list / delete filings
#   - container.py: DI root that builds every component once per process
# =============================================================================
