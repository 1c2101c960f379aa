"""
Prometheus metrics for server-scout.

Metrics exposed:
- Probe outcome counters and sweep duration histograms
- Regional-interest set size gauge
- Profile API request counters, cache hits and rate-limit waits
- Enrichment queue counters and size gauge
- Prediction counters by classifier kind and result source

Exposition (an HTTP endpoint or push gateway) is left to the host process.
"""
from prometheus_client import Counter, Gauge, Histogram

# Scanner
probe_results_total = Counter(
    "scout_probe_results_total",
    "UDP probe outcomes",
    ["outcome"]  # online, offline, failed
)

sweep_duration_seconds = Histogram(
    "scout_sweep_duration_seconds",
    "Duration of scanner sweeps in seconds",
    ["kind"],  # full, hot
    buckets=(5, 15, 30, 60, 120, 300, 600, 1200)
)

sweeps_skipped_total = Counter(
    "scout_sweeps_skipped_total",
    "Sweeps skipped because the previous run of the same kind was still active",
    ["kind"]
)

regional_servers = Gauge(
    "scout_regional_servers",
    "Addresses currently in the regional-interest set"
)

# Classification
predictions_total = Counter(
    "scout_predictions_total",
    "Predictions produced",
    ["kind", "source"]
)

# Profile API
profile_api_requests_total = Counter(
    "scout_profile_api_requests_total",
    "Profile API requests",
    ["endpoint", "outcome"]
)

profile_cache_hits_total = Counter(
    "scout_profile_cache_hits_total",
    "Profile lookups served from cache",
    ["endpoint"]
)

rate_limit_waits_total = Counter(
    "scout_rate_limit_waits_total",
    "Times the profile client blocked on the sliding-window limiter"
)

# Enrichment queue
enrichment_items_total = Counter(
    "scout_enrichment_items_total",
    "Enrichment queue item outcomes",
    ["outcome"]  # saved, skipped, retried, dropped, failed
)

enrichment_queue_size = Gauge(
    "scout_enrichment_queue_size",
    "Items waiting in the enrichment queue"
)
