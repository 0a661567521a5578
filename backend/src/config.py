"""
Configuration management for the FPL Punishment Tracker.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase Configuration
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)

    # FPL API Configuration
    fpl_api_base_url: str = os.getenv("FPL_API_BASE_URL", "https://fantasy.premierleague.com/api")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "10.0"))
    user_agent: str = os.getenv("FPL_USER_AGENT", "Fantasy-PL-Punishment-Tracker/1.0")
    # Standings are paged 50 entries at a time; stop following has_next after this many pages
    max_standings_pages: int = int(os.getenv("MAX_STANDINGS_PAGES", "20"))

    # Rate Limiting
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "60"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.25"))

    # Retry Configuration (shared by on-demand generation, refresh and sync)
    max_retries: int = int(os.getenv("MAX_RETRIES", "5"))  # total attempts per period
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: int = int(os.getenv("MAX_RETRY_DELAY", "60"))
    retry_jitter: float = float(os.getenv("RETRY_JITTER", "0.0"))  # fraction, e.g. 0.25 for ±25%

    # Cache Configuration
    cache_ttl: int = int(os.getenv("CACHE_TTL", "300"))  # 5 minutes

    # Punishment rules
    punishment_distance_km: float = float(os.getenv("PUNISHMENT_DISTANCE_KM", "1.0"))

    # Refresh cadence
    # Pause between gameweeks during a full refresh so the FPL API isn't hammered
    refresh_period_delay: float = float(os.getenv("REFRESH_PERIOD_DELAY", "0.5"))
    # Service loop: fill missing gameweeks for tracked leagues every N seconds
    sync_interval_seconds: int = int(os.getenv("SYNC_INTERVAL_SECONDS", "3600"))

    # Leagues the background service keeps in sync. Set TRACKED_LEAGUE_IDS (comma-separated).
    tracked_league_ids: List[int] = field(default_factory=list)

    # API
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_KEY is required")
        if self.max_retries < 1:
            errors.append("MAX_RETRIES must be at least 1")
        if self.punishment_distance_km <= 0:
            errors.append("PUNISHMENT_DISTANCE_KM must be positive")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        if not self.tracked_league_ids:
            ids: List[int] = []
            raw_list = os.getenv("TRACKED_LEAGUE_IDS")
            if raw_list:
                for s in raw_list.split(","):
                    s = s.strip()
                    if s:
                        try:
                            ids.append(int(s))
                        except ValueError:
                            pass
            self.tracked_league_ids = ids
        self.validate()
