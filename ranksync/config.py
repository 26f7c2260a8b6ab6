import os
from dataclasses import dataclass
from dotenv import load_dotenv

from ranksync.constants import WindowConstants, TimingConstants, FeedConstants

load_dotenv()


@dataclass(frozen=True)
class SyncSettings:
    """Options recognized by the synchronization core (all have defaults)."""
    window_size: int = WindowConstants.DEFAULT_WINDOW_SIZE
    identity_debounce_ms: int = TimingConstants.IDENTITY_DEBOUNCE_MS
    global_debounce_ms: int = TimingConstants.GLOBAL_DEBOUNCE_MS
    fetch_timeout_ms: int = TimingConstants.FETCH_TIMEOUT_MS
    fallback_interval_ms: int = TimingConstants.FALLBACK_REFRESH_MS

    def __post_init__(self):
        if not 1 <= self.window_size <= WindowConstants.MAX_WINDOW_SIZE:
            raise ValueError(f"window_size must be between 1 and {WindowConstants.MAX_WINDOW_SIZE}")
        for name in ('identity_debounce_ms', 'global_debounce_ms'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        for name in ('fetch_timeout_ms', 'fallback_interval_ms'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def fetch_timeout(self) -> float:
        return self.fetch_timeout_ms / 1000

    @property
    def fallback_interval(self) -> float:
        return self.fallback_interval_ms / 1000


class Config:
    """RankSync configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///ranksync.db')

    # Change feed settings
    REDIS_URL = os.getenv('REDIS_URL')
    CHANGES_CHANNEL = os.getenv('RANKSYNC_CHANGES_CHANNEL', FeedConstants.DEFAULT_CHANNEL)

    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Logging settings (empty RANKSYNC_LOG_DIR disables the file handler)
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_DIR = os.getenv('RANKSYNC_LOG_DIR', 'logs')
    LOG_FILE_PREFIX = os.getenv('RANKSYNC_LOG_PREFIX', 'ranksync')

    # Leaderboard synchronization settings
    LEADERBOARD_WINDOW_SIZE = int(os.getenv('LEADERBOARD_WINDOW_SIZE', WindowConstants.DEFAULT_WINDOW_SIZE))
    IDENTITY_DEBOUNCE_MS = int(os.getenv('IDENTITY_DEBOUNCE_MS', TimingConstants.IDENTITY_DEBOUNCE_MS))
    GLOBAL_DEBOUNCE_MS = int(os.getenv('GLOBAL_DEBOUNCE_MS', TimingConstants.GLOBAL_DEBOUNCE_MS))
    FETCH_TIMEOUT_MS = int(os.getenv('FETCH_TIMEOUT_MS', TimingConstants.FETCH_TIMEOUT_MS))
    FALLBACK_REFRESH_MS = int(os.getenv('FALLBACK_REFRESH_MS', TimingConstants.FALLBACK_REFRESH_MS))

    @classmethod
    def sync_settings(cls) -> SyncSettings:
        """Build the synchronization settings from the environment"""
        return SyncSettings(
            window_size=cls.LEADERBOARD_WINDOW_SIZE,
            identity_debounce_ms=cls.IDENTITY_DEBOUNCE_MS,
            global_debounce_ms=cls.GLOBAL_DEBOUNCE_MS,
            fetch_timeout_ms=cls.FETCH_TIMEOUT_MS,
            fallback_interval_ms=cls.FALLBACK_REFRESH_MS,
        )

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if not cls.CHANGES_CHANNEL:
            raise ValueError("RANKSYNC_CHANGES_CHANNEL must not be empty")
        # Raises ValueError for out-of-range sync options
        cls.sync_settings()
