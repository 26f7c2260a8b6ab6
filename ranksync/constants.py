"""
Ranking-wide constants for the RankSync leaderboard core.

This module contains all magic numbers and default values used throughout
the codebase to improve maintainability and clarity.
"""


class WindowConstants:
    """Constants related to the tracked top-N window."""

    # Number of participants kept in the ranked window
    DEFAULT_WINDOW_SIZE = 10

    # Upper bound accepted from configuration
    MAX_WINDOW_SIZE = 50

    # Label used when a fetched row carries no display name
    ANONYMOUS_LABEL = "Anonymous"


class TimingConstants:
    """Debounce, timeout and polling defaults (milliseconds)."""

    IDENTITY_DEBOUNCE_MS = 1000
    GLOBAL_DEBOUNCE_MS = 2000
    FETCH_TIMEOUT_MS = 10000
    FALLBACK_REFRESH_MS = 30000

    # Identity timers older than this are pruned from the coalescer
    TIMER_PRUNE_AFTER_MS = 60000


class FeedConstants:
    """Constants for the push change feed."""

    DEFAULT_CHANNEL = "ranksync:changes"

    # Fields that can move a participant in the window
    SCORE_FIELDS = ("points", "total_gifts")

    # Aliases accepted for the secondary score in feed payloads
    GIFT_FIELD_ALIASES = ("total_gifts", "gifts")
