"""Prometheus metrics for the credential lifecycle and attachment index.

Metrics exported:
- workspace_auth_token_resolutions_total: renewal-policy outcomes by status
- workspace_auth_token_refresh_attempts_total: token-endpoint refresh calls by outcome
- workspace_auth_callback_deliveries_total: OAuth redirects by outcome
- workspace_auth_client_cache_lookups_total: client-cache lookups by result
- workspace_auth_attachment_evictions_total: index evictions by reason
- workspace_auth_attachment_cleanup_seconds: duration of index sweeps

Account emails are deliberately not used as labels.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

token_resolutions_total = Counter(
    "workspace_auth_token_resolutions_total",
    "Token renewal-policy resolutions by resulting status",
    labelnames=["status"],
)

token_refresh_attempts_total = Counter(
    "workspace_auth_token_refresh_attempts_total",
    "Refresh-token exchanges against the OAuth token endpoint",
    labelnames=["outcome"],
)

callback_deliveries_total = Counter(
    "workspace_auth_callback_deliveries_total",
    "OAuth redirect deliveries to the callback correlator",
    labelnames=["outcome"],
)

client_cache_lookups_total = Counter(
    "workspace_auth_client_cache_lookups_total",
    "Authenticated client cache lookups",
    labelnames=["service", "result"],
)

attachment_evictions_total = Counter(
    "workspace_auth_attachment_evictions_total",
    "Attachment metadata records removed from the index",
    labelnames=["reason"],
)

attachment_cleanup_seconds = Histogram(
    "workspace_auth_attachment_cleanup_seconds",
    "Duration of attachment index cleanup sweeps in seconds",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)


def record_token_resolution(status: str) -> None:
    token_resolutions_total.labels(status=status).inc()


def record_refresh_attempt(outcome: str) -> None:
    """Record a refresh call outcome ("success", "transient_error", "revoked")."""
    token_refresh_attempts_total.labels(outcome=outcome).inc()


def record_callback_delivery(outcome: str) -> None:
    callback_deliveries_total.labels(outcome=outcome).inc()


def record_client_cache_lookup(service: str, result: str) -> None:
    client_cache_lookups_total.labels(service=service, result=result).inc()


def record_attachment_evictions(reason: str, count: int = 1) -> None:
    if count > 0:
        attachment_evictions_total.labels(reason=reason).inc(count)


def observe_cleanup_duration(seconds: float) -> None:
    attachment_cleanup_seconds.observe(seconds)
