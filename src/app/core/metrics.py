from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status_code"],
)

EXTERNAL_API_COUNT = Counter(
    "external_api_requests_total",
    "Total number of upstream fetches",
    ["resource_class", "status"],
)

EXTERNAL_API_DURATION = Histogram(
    "external_api_duration_seconds",
    "Duration of upstream fetches in seconds",
    ["resource_class"],
)

CACHE_HITS = Counter("cache_hits_total", "Total number of cache hits", ["resource_class"])
CACHE_MISSES = Counter("cache_misses_total", "Total number of cache misses", ["resource_class"])
CACHE_COALESCED = Counter(
    "cache_coalesced_total",
    "Lookups that awaited an in-flight fetch instead of starting one",
    ["resource_class"],
)

CACHE_EVICTIONS = Counter(
    "cache_evictions_total",
    "Entries removed from the cache index",
    ["resource_class", "reason"],
)

FALLBACK_RESOLUTIONS = Counter(
    "fallback_resolutions_total",
    "Degraded references handed out instead of a live payload",
    ["kind"],
)

PROVIDER_FAILURES = Counter(
    "provider_failures_total",
    "Aggregator provider calls that ended without results",
    ["provider_id"],
)
