"""
Configuration settings for the prover registry
"""

import os
import sys
from typing import List
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = os.getenv("APP_NAME", "Prover Registry")
    APP_DEBUG: bool = os.getenv("APP_DEBUG", "False").lower() == "true"
    APP_ENV: str = os.getenv("APP_ENV", "development")
    APP_LOG_LEVEL: str = os.getenv("APP_LOG_LEVEL", "INFO")
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8090"))

    # Database (registered prover endpoints)
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", "sqlite:///./data/prover_registry.db"
    )

    # Redis (valid prover snapshots)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # CORS origins (comma-separated, "*" allows any origin)
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Static assets served under "/" when the directory exists
    STATIC_DIR: str = os.getenv("STATIC_DIR", "./pb_public")

    # Prover probing
    PROBE_TIMEOUT_SECONDS: float = float(os.getenv("PROBE_TIMEOUT_SECONDS", "4"))

    # Snapshot cache policy
    CACHE_STALE_AFTER_SECONDS: int = int(
        os.getenv("CACHE_STALE_AFTER_SECONDS", "3600")
    )  # 1 hour
    CACHE_FULL_REFRESH_TTL_SECONDS: int = int(
        os.getenv("CACHE_FULL_REFRESH_TTL_SECONDS", "86400")
    )  # 24 hours
    CACHE_INCREMENTAL_TTL_SECONDS: int = int(
        os.getenv("CACHE_INCREMENTAL_TTL_SECONDS", "3600")
    )  # 1 hour
    CACHE_LOCK_TIMEOUT_SECONDS: int = int(os.getenv("CACHE_LOCK_TIMEOUT_SECONDS", "30"))
    CACHE_LOCK_BLOCKING_TIMEOUT_SECONDS: int = int(
        os.getenv("CACHE_LOCK_BLOCKING_TIMEOUT_SECONDS", "10")
    )

    # Maximum records enumerated per full refresh
    ENDPOINT_ENUMERATION_LIMIT: int = int(
        os.getenv("ENDPOINT_ENUMERATION_LIMIT", "1000")
    )

    # Logging
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator("APP_DEBUG", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes")
        return bool(v)

    @property
    def cors_origins(self) -> List[str]:
        """CORS origins as a list"""
        raw = (self.CORS_ORIGINS or "*").strip()
        if raw == "*":
            return ["*"]
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        # Ignore unknown environment variables
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_cache_policy(self) -> "Settings":
        """
        Validate probe and cache timing settings at startup.

        Durations must be positive. A stale threshold at or beyond the full
        refresh TTL means snapshots expire before they are ever revalidated in
        the background, which is allowed but almost certainly a mistake.
        """
        durations = {
            "PROBE_TIMEOUT_SECONDS": self.PROBE_TIMEOUT_SECONDS,
            "CACHE_STALE_AFTER_SECONDS": self.CACHE_STALE_AFTER_SECONDS,
            "CACHE_FULL_REFRESH_TTL_SECONDS": self.CACHE_FULL_REFRESH_TTL_SECONDS,
            "CACHE_INCREMENTAL_TTL_SECONDS": self.CACHE_INCREMENTAL_TTL_SECONDS,
            "CACHE_LOCK_TIMEOUT_SECONDS": self.CACHE_LOCK_TIMEOUT_SECONDS,
            "CACHE_LOCK_BLOCKING_TIMEOUT_SECONDS": self.CACHE_LOCK_BLOCKING_TIMEOUT_SECONDS,
            "ENDPOINT_ENUMERATION_LIMIT": self.ENDPOINT_ENUMERATION_LIMIT,
        }
        invalid = [name for name, value in durations.items() if value <= 0]
        if invalid:
            raise ValueError(f"Settings must be positive: {', '.join(invalid)}")

        if self.CACHE_STALE_AFTER_SECONDS >= self.CACHE_FULL_REFRESH_TTL_SECONDS:
            print(
                "\033[93mWARNING: CACHE_STALE_AFTER_SECONDS is not shorter than "
                "CACHE_FULL_REFRESH_TTL_SECONDS; snapshots will expire before "
                "background revalidation can run.\033[0m",
                file=sys.stderr,
            )

        return self


# Global settings instance
settings = Settings()
