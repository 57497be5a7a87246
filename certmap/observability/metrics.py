"""
Prometheus metrics for the certificate mapping service.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Documents ────────────────────────────────────────────────
documents_uploaded_total = Counter(
    "certmap_documents_uploaded_total",
    "Total documents uploaded",
    ["path"],  # inline | queued | stored
)

pipeline_runs_total = Counter(
    "certmap_pipeline_runs_total",
    "Pipeline runs by terminal outcome",
    ["outcome"],  # done | skipped | error
)

pipeline_errors_total = Counter(
    "certmap_pipeline_errors_total",
    "Pipeline failures by error code",
    ["error_code"],
)

mappings_accepted_total = Counter(
    "certmap_mappings_accepted_total",
    "Mappings frozen by user acceptance",
)

# ── Extraction ───────────────────────────────────────────────
extraction_duration_seconds = Histogram(
    "certmap_extraction_duration_seconds",
    "Time to extract one document",
    ["engine_name"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

pages_extracted_total = Counter(
    "certmap_pages_extracted_total",
    "Total pages extracted",
    ["engine_name"],
)

mapped_fields_total = Counter(
    "certmap_mapped_fields_total",
    "Fields surviving normalization",
    ["field"],
)

# ── Worker / broadcast ───────────────────────────────────────
worker_queue_depth = Gauge(
    "certmap_worker_queue_depth",
    "Number of jobs waiting in queue",
)

worker_jobs_active = Gauge(
    "certmap_worker_jobs_active",
    "Number of currently active worker jobs",
)

status_subscribers = Gauge(
    "certmap_status_subscribers",
    "Live status subscribers across all documents",
)
