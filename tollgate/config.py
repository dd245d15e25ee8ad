"""
Gatekeeper configuration.

Loads settings from environment variables with sensible defaults.
Every component treats these values as read-only.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gatekeeper settings loaded from environment (TOLLGATE_*)."""
    
    model_config = SettingsConfigDict(
        env_prefix="TOLLGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
    
    # ==========================================================================
    # Environment
    # ==========================================================================
    
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    
    # ==========================================================================
    # Tokens
    # ==========================================================================
    
    default_token_lifetime_days: int = 90
    max_token_lifetime_days: int = 365
    token_hash_iterations: int = 100_000
    
    # Expired tokens keep verifying as "expired" until purged after this
    expired_token_grace_days: int = 30
    
    # Upper bound on hash comparisons per verification
    verify_scan_limit: int = 64
    
    # ==========================================================================
    # Rate limiting
    # ==========================================================================
    
    rate_limit_per_window: int = 100
    rate_limit_window_seconds: int = 60
    
    # ==========================================================================
    # Audit log
    # ==========================================================================
    
    audit_retention_days: int = 90
    audit_max_entries: int = 10_000
    
    # ==========================================================================
    # Authorization
    # ==========================================================================
    
    admin_capability: str = "manage_options"
    session_capability: str = "use_api"
    capability_table_path: str = ""
    
    # ==========================================================================
    # Housekeeping
    # ==========================================================================
    
    housekeeping_interval_seconds: int = 3600
    
    # ==========================================================================
    # HTTP binding
    # ==========================================================================
    
    trust_forwarded_headers: bool = True
    cors_origins: str = ""
    
    # ==========================================================================
    # Optional Services
    # ==========================================================================
    
    sentry_dsn: str = ""
    
    # ==========================================================================
    # Helpers
    # ==========================================================================
    
    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
    
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
