"""Prometheus metrics."""

from prometheus_client import Counter, Gauge, Histogram

# Provider metrics
provider_call_duration = Histogram(
    "festos_provider_call_duration_seconds",
    "Storage provider call duration",
    ["provider", "operation"],
)

provider_call_failures = Counter(
    "festos_provider_call_failures_total",
    "Failed storage provider calls",
    ["provider", "operation"],
)

provider_health_status = Gauge(
    "festos_provider_health_status",
    "Provider health (0=healthy, 1=degraded, 2=down)",
    ["provider"],
)

provider_alerts = Counter(
    "festos_provider_alerts_total",
    "Health alerts raised",
    ["provider", "kind"],
)

# Orchestration metrics
saga_steps = Counter(
    "festos_event_saga_steps_total",
    "Event creation saga step outcomes",
    ["step", "outcome"],
)

read_fallbacks = Counter(
    "festos_event_read_fallbacks_total",
    "Event reads served from the ledger instead of the database",
    ["reason"],
)

# Reconciliation metrics
divergences_detected = Counter(
    "festos_divergences_detected_total",
    "Field divergences detected between database and ledger",
    ["field"],
)

sync_repairs = Counter(
    "festos_sync_repairs_total",
    "Data sync outcomes per divergence",
    ["field", "outcome"],
)

health_state_store_errors = Counter(
    "festos_health_state_store_errors_total",
    "Shared health state reads or writes that fell back to process memory",
    ["operation"],
)
