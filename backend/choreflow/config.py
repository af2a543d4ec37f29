"""Application configuration and environment variables"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # Push delivery (Expo push service)
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str = ""
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # All time-of-day arithmetic (quiet hours, recurrence, optimal times) uses this zone
    TIMEZONE: str = "UTC"

    # Periodic job cadence
    QUEUE_DRAIN_INTERVAL_SECONDS: int = 30
    ESCALATION_SWEEP_INTERVAL_SECONDS: int = 300
    RECURRING_TICK_SECONDS: int = 60
    TIMER_PUMP_INTERVAL_SECONDS: int = 15

    # Dispatch queue
    MAX_DELIVERY_ATTEMPTS: int = 3
    RATE_LIMIT_WINDOW_MINUTES: int = 60
    SEND_HISTORY_RETENTION_HOURS: int = 24

    # Reminders and escalation
    RESPONSE_OBSERVATION_MINUTES: int = 30
    OPTIMAL_TIME_SNAP_MINUTES: int = 60
    DEVICE_RESTRICTION_HOURS: int = 24

    # Change-feed webhooks
    WEBHOOK_SECRET: str = ""

    # CORS Configuration - can be set as JSON array string in env var
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Accept a plain comma-separated CORS_ORIGINS as well as a JSON array
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            cors_env = cors_env.strip()
            if cors_env.startswith("["):
                try:
                    parsed = json.loads(cors_env)
                    if isinstance(parsed, list):
                        self.CORS_ORIGINS = parsed
                except (json.JSONDecodeError, ValueError):
                    pass  # Fall back to pydantic's parsed value
            elif "," in cors_env:
                self.CORS_ORIGINS = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

    # Application Configuration
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
