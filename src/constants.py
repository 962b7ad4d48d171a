"""Application-wide constants.

This module centralizes all magic numbers and configuration constants
to ensure a single source of truth and easier maintenance.

Most of these are the defaults of the matching fields in src/config.py and
can be overridden through the environment.
"""

# =============================================================================
# Scan Scheduling
# =============================================================================

# Max owner ids per profile lookup (keeps PostgREST query strings short)
PROFILE_LOOKUP_CHUNK_SIZE = 200

# Weekday (Monday=0) on which the weekly scan run happens
WEEKLY_SCAN_WEEKDAY = 0

# Event name emitted to the work queue for every scan job
SCAN_REQUESTED_EVENT = "scan/requested"

# =============================================================================
# Self-Healing Backup Runner
# =============================================================================

# Pending jobs younger than this are assumed to still be legitimately queued
STALE_SCAN_THRESHOLD_HOURS = 2

# How far back stale recovery looks (wide enough to span a missed midnight)
STALE_SCAN_LOOKBACK_HOURS = 48

# =============================================================================
# HTTP Timeout Configuration
# =============================================================================

# Timeout for work queue sends and subscription re-syncs (seconds)
QUEUE_TIMEOUT_SECONDS = 10.0

# Timeout for analytics provider queries (seconds)
ANALYTICS_TIMEOUT_SECONDS = 10.0

# =============================================================================
# Correlation Checkpoints
# =============================================================================

# Horizons (days after first detection) at which a change is measured
CHECKPOINT_HORIZONS = (7, 14, 30, 60, 90)

# Metrics whose change within +/- this percent is always neutral
NEUTRAL_BAND_PERCENT = 3.0

# Absolute change (percent) at which the magnitude part of confidence saturates
CONFIDENCE_FULL_MAGNITUDE_PERCENT = 30.0

# Traffic volume at which the sample-size part of confidence saturates
CONFIDENCE_REFERENCE_SAMPLE_SIZE = 1000

# Max number of changes processed concurrently by one engine run
CHECKPOINT_CONCURRENCY = 8

# Max change ids per checkpoint lookup
CHECKPOINT_LOOKUP_BATCH_SIZE = 300

# =============================================================================
# Pages
# =============================================================================

# Longest URL accepted for page registration
MAX_URL_LENGTH = 2048

# Longest hypothesis text stored on a change
MAX_HYPOTHESIS_CHARS = 500

# =============================================================================
# Rate Limiting
# =============================================================================

# Maximum owner-facing write requests per action per window
MAX_REQUESTS_PER_ACTION = 20

# Rate limit window in seconds
RATE_LIMIT_WINDOW_SECONDS = 60

# =============================================================================
# Analytics Providers
# =============================================================================

# Default PostHog API host when the integration does not store one
POSTHOG_DEFAULT_HOST = "https://us.posthog.com"

# =============================================================================
# Database
# =============================================================================

# Rows per request when paging through unbounded listings
QUERY_PAGE_SIZE = 500

# Queries slower than this (milliseconds) are logged as warnings
SLOW_QUERY_MS = 500
