"""Prometheus metrics for provider fetches, normalization quality and attestation output"""

from prometheus_client import Counter, Histogram

# Provider metrics
provider_fetch_failures_counter = Counter(
    "provider_fetch_failures_total",
    "Failed provider API calls",
    ["provider"],
)

provider_pages_counter = Counter(
    "provider_pages_fetched_total",
    "Pages fetched from provider APIs",
    ["provider"],
)

provider_partial_fetch_counter = Counter(
    "provider_partial_fetches_total",
    "Fetches that stopped early (page cap or cancellation)",
    ["provider", "reason"],
)

provider_latency_histogram = Histogram(
    "provider_fetch_latency_seconds",
    "Provider API response time per request",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

normalization_skipped_counter = Counter(
    "normalization_skipped_total",
    "Raw records skipped because required fields were missing",
    ["provider"],
)

# Attestation metrics
attestations_built_counter = Counter(
    "attestations_built_total",
    "Attestations built and hashed",
    ["provider"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_partial_fetch(provider: str, reason: str) -> None:
    """Count early-stopped fetches by cause so truncated attestations are visible"""
    label = "cancelled" if reason.startswith("cancel") else "page_cap"
    provider_partial_fetch_counter.labels(provider=provider, reason=label).inc()
