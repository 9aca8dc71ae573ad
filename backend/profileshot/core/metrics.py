from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Profile fetches
# ---------------------------------------------------------------------------
profile_fetch_total = Counter(
    "profile_fetch_total",
    "Total profile screenshot requests by outcome",
    ["status"],
)
profile_fetch_duration_seconds = Histogram(
    "profile_fetch_duration_seconds",
    "Time spent producing a single profile screenshot",
    buckets=[1, 2, 5, 10, 20, 30, 60, 120, 300, 600],
)
rate_limit_wait_seconds = Histogram(
    "rate_limit_wait_seconds",
    "Time a request waited for the fetch rate limit window",
    buckets=[0, 1, 5, 15, 30, 60, 90],
)

# ---------------------------------------------------------------------------
# Challenge handling
# ---------------------------------------------------------------------------
challenge_detected_total = Counter(
    "challenge_detected_total",
    "Verification challenges detected, by where they appeared",
    ["stage"],
)
challenge_resolution_total = Counter(
    "challenge_resolution_total",
    "Challenge resolution outcomes",
    ["outcome"],
)

# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------
login_attempts_total = Counter(
    "login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)
session_resets_total = Counter(
    "session_resets_total",
    "Times the browser session was torn down and rebuilt",
)
mode_switches_total = Counter(
    "mode_switches_total",
    "Browser context relaunches by target render mode",
    ["target"],
)
active_session = Gauge(
    "active_session",
    "1 when an authenticated browser session is ready",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
