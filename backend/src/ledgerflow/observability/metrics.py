"""Prometheus metrics for LedgerFlow.

Defines operational metrics for the categorization pipeline, embedding
generation and invoice reconciliation.
"""

from prometheus_client import Counter, Histogram, Gauge

# Categorization metrics
transactions_categorized_total = Counter(
    "ledgerflow_transactions_categorized_total",
    "Transactions that left the categorization pipeline",
    ["method", "status"]  # method: rule|global_pattern|similarity|none, status: categorized|needs_review|failed
)

categorization_batch_duration_seconds = Histogram(
    "ledgerflow_categorization_batch_duration_seconds",
    "Time spent on one categorization batch in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

categorization_confidence_histogram = Histogram(
    "ledgerflow_categorization_confidence",
    "Categorization confidence distribution",
    ["method"],
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

categorization_errors_total = Counter(
    "ledgerflow_categorization_errors_total",
    "Unexpected per-transaction categorization errors",
)

# Embedding metrics
embeddings_generated_total = Counter(
    "ledgerflow_embeddings_generated_total",
    "Embedding generation attempts",
    ["target", "status"]  # target: transaction|example, status: success|error
)

embedding_latency_ms = Histogram(
    "ledgerflow_embedding_latency_ms",
    "Embedding provider call latency in milliseconds",
    ["provider"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000]
)

embedding_cost_micros_total = Counter(
    "ledgerflow_embedding_cost_micros_total",
    "Total embedding cost in micros (1 micro = 0.000001 USD)",
    ["provider"]
)

# Feedback metrics
feedback_events_total = Counter(
    "ledgerflow_feedback_events_total",
    "User category corrections",
    ["apply_to_similar"]
)

feedback_propagated_total = Counter(
    "ledgerflow_feedback_propagated_total",
    "Transactions updated by apply_to_similar propagation",
)

# Reconciliation metrics
invoice_links_total = Counter(
    "ledgerflow_invoice_links_total",
    "Invoice to transaction links",
    ["matched_by"]  # auto|manual
)

invoice_link_conflicts_total = Counter(
    "ledgerflow_invoice_link_conflicts_total",
    "Link attempts rejected because the transaction is already linked",
)

reconciliation_top_score = Histogram(
    "ledgerflow_reconciliation_top_score",
    "Score of the best suggestion per invoice",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

# Queue depth metrics
pending_transactions = Gauge(
    "ledgerflow_pending_transactions",
    "Transactions waiting for categorization at the end of the last batch"
)

# API metrics
http_requests_total = Counter(
    "ledgerflow_http_requests_total",
    "API requests by method and response status",
    ["method", "status"]
)
