"""Prometheus metrics for routing, admission control and draft replay."""

from prometheus_client import Counter, Gauge, Histogram

language_detection_total = Counter(
    "linguaroute_language_detection_total",
    "Total language detection outcomes by backend/result",
    ["backend", "result"],
)

language_detection_confidence = Histogram(
    "linguaroute_language_detection_confidence",
    "Confidence of language detection outcomes",
    ["backend"],
    buckets=(0.0, 0.3, 0.5, 0.7, 0.8, 0.9, 0.95, 1.0),
)

provider_attempts_total = Counter(
    "linguaroute_provider_attempts_total",
    "Provider invocation attempts by provider and outcome",
    ["provider", "outcome"],
)

route_duration_seconds = Histogram(
    "linguaroute_route_duration_seconds",
    "Duration of routed translation operations",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

route_results_total = Counter(
    "linguaroute_route_results_total",
    "Routed translation results by outcome",
    ["operation", "outcome"],
)

compliance_blocks_total = Counter(
    "linguaroute_compliance_blocks_total",
    "Provider routes blocked by the compliance policy",
    ["provider"],
)

budget_spend_usd = Gauge(
    "linguaroute_budget_spend_usd",
    "Cumulative spend in the current daily budget window",
)

budget_rejections_total = Counter(
    "linguaroute_budget_rejections_total",
    "Charges rejected because they would exceed the daily budget",
)

glossary_conflicts_total = Counter(
    "linguaroute_glossary_conflicts_total",
    "Glossary applications that required caller resolution",
)

rate_limit_rejections_total = Counter(
    "linguaroute_rate_limit_rejections_total",
    "Requests rejected by the per-tenant rate limit",
)

draft_replay_total = Counter(
    "linguaroute_draft_replay_total",
    "Offline draft replay attempts by outcome",
    ["outcome"],
)

translation_cache_total = Counter(
    "linguaroute_translation_cache_total",
    "Translation cache lookups by tier/result",
    ["tier", "result"],
)
