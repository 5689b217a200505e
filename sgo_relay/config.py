"""
Configuration module for the school portal relay.

This module uses Pydantic Settings to load and validate environment variables
for the upstream school system (SGO), the identity provider (ESIA), session
lifetimes, CORS and logging.

Environment variables are loaded from .env file or system environment.
"""

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REGION_URLS: Dict[str, str] = {
    "msk": "https://sgo.mos.ru",
    "spb": "https://sgo.spb.ru",
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a default so the service starts without an .env file;
    identity provider login stays disabled until ESIA_CLIENT_ID is set.
    """

    # =========================================================================
    # Upstream School System (SGO)
    # =========================================================================

    SGO_DEFAULT_URL: str = Field(
        default="https://sgo.rso23.ru",
        description="Base URL used when no region or an unknown region is given",
    )

    SGO_REGION_URLS: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_REGION_URLS),
        description="Region code to base URL mapping (JSON object in the environment)",
    )

    SGO_USER_AGENT: str = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        description="User-Agent expected by the school system login contract",
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Timeout applied to every upstream HTTP call",
        gt=0,
        le=120,
    )

    # =========================================================================
    # Identity Provider (ESIA OAuth2 + PKCE)
    # =========================================================================

    ESIA_CLIENT_ID: str = Field(default="", description="Identity provider client ID")

    ESIA_CLIENT_SECRET: str = Field(
        default="",
        description="Identity provider client secret",
    )

    ESIA_REDIRECT_URI: str = Field(
        default="http://localhost:3000/api/auth/esia/callback",
        description="OAuth redirect URI registered with the identity provider",
    )

    ESIA_SCOPE: str = Field(
        default="openid fullname birthdate snils email mobile",
        description="Space separated OAuth scopes",
    )

    ESIA_AUTHORIZE_URL: str = Field(
        default="https://esia.gosuslugi.ru/aas/oauth2/v2/ac",
        description="Authorization endpoint (browser redirect)",
    )

    ESIA_TOKEN_URL: str = Field(
        default="https://esia.gosuslugi.ru/aas/oauth2/v3/te",
        description="Token endpoint (form encoded POST)",
    )

    ESIA_PROFILE_URL: str = Field(
        default="https://esia.gosuslugi.ru/rs/prns",
        description="Profile endpoint; the subject id is appended as a path segment",
    )

    # =========================================================================
    # Session Lifetimes
    # =========================================================================

    OAUTH_STATE_TTL_SECONDS: int = Field(
        default=600,
        description="Lifetime of a pending authorization (state token)",
        ge=30,
        le=3600,
    )

    SESSION_MAX_AGE_MINUTES: int = Field(
        default=720,
        description="Absolute session lifetime in minutes",
        ge=5,
        le=10080,
    )

    SESSION_IDLE_MINUTES: int = Field(
        default=120,
        description="Session idle timeout in minutes",
        ge=1,
        le=10080,
    )

    SWEEP_INTERVAL_SECONDS: int = Field(
        default=60,
        description="Interval of the background sweep of expired sessions and states",
        ge=1,
    )

    # =========================================================================
    # Relay Server Configuration
    # =========================================================================

    FRONTEND_URL: str = Field(
        default="/",
        description="Where the OAuth callback redirects with ?session= or ?error=",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    HOST: str = Field(default="0.0.0.0", description="Host to bind the relay server")

    PORT: int = Field(default=3000, description="Port to bind the relay server", ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def esia_configured(self) -> bool:
        return bool(self.ESIA_CLIENT_ID)

    def resolve_base_url(self, region: Optional[str]) -> str:
        """
        Map a region code to the school system base URL.

        Unknown or absent regions fall back to SGO_DEFAULT_URL.
        """
        if region:
            url = self.SGO_REGION_URLS.get(region.strip().lower())
            if url:
                return url.rstrip("/")
        return self.SGO_DEFAULT_URL.rstrip("/")

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator(
        "SGO_DEFAULT_URL",
        "ESIA_AUTHORIZE_URL",
        "ESIA_TOKEN_URL",
        "ESIA_PROFILE_URL",
    )
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that upstream endpoints are absolute http(s) URLs.

        Raises:
            ValueError: If the URL has no http:// or https:// scheme
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid URL: '{v}'. Expected an absolute http(s) URL")
        return v.rstrip("/")

    @field_validator("SGO_REGION_URLS")
    @classmethod
    def validate_region_urls(cls, v: Dict[str, str]) -> Dict[str, str]:
        normalized = {}
        for region, url in v.items():
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid URL for region '{region}': '{url}'")
            normalized[region.strip().lower()] = url.rstrip("/")
        return normalized

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()
