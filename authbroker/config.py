"""
Configuration module for the auth broker.

This module uses Pydantic Settings to load and validate environment variables
for the configured OIDC providers, session token signing, request lifetimes
and the HTTP server.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OidcProviderConfig(BaseModel):
    """Configuration of a single OIDC provider."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Display name shown to users", min_length=1)
    client_id: str = Field(..., alias="clientId", min_length=1)
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    issuer_url: str = Field(..., alias="issuerUrl", min_length=1)
    redirect_url: str = Field(..., alias="redirectUrl", min_length=1)

    @field_validator("issuer_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # =========================================================================
    # OIDC Providers
    # =========================================================================

    OIDC_PROVIDERS: Dict[str, OidcProviderConfig] = Field(
        default_factory=dict,
        description=(
            "JSON object mapping provider id to "
            "{name, clientId, clientSecret, issuerUrl, redirectUrl}"
        ),
    )

    # =========================================================================
    # Session JWT Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        ...,
        description="Secret key for signing session JWTs (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384 or HS512)",
    )

    SESSION_JWT_EXPIRY_MINUTES: Optional[int] = Field(
        default=None,
        description="Session JWT lifetime in minutes, unset issues tokens without exp",
        ge=1,
    )

    # =========================================================================
    # Request Lifetimes
    # =========================================================================

    REQUEST_EXPIRY_SECONDS: int = Field(
        default=300,
        description="Seconds a login request can be completed or redeemed",
        ge=1,
    )

    REQUEST_DELETION_GRACE_SECONDS: int = Field(
        default=600,
        description="Seconds after expiry before a request is purged",
        ge=0,
    )

    CLEANUP_INTERVAL_SECONDS: float = Field(
        default=1800,
        description="Interval of the background request cleaner",
        gt=0,
    )

    QUICK_CONNECT_URL: str = Field(
        default="http://localhost:8080/quick-connect",
        description="Page where a signed-in user enters a quick-connect code",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=8080, description="Port to bind the server", ge=1, le=65535)

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

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

    def masked(self) -> Dict[str, Any]:
        """Settings as a dict with secrets replaced, safe to log."""
        data = self.model_dump()
        data["SESSION_JWT_SECRET"] = "***"
        for provider in data["OIDC_PROVIDERS"].values():
            provider["client_id"] = "***"
            if provider.get("client_secret"):
                provider["client_secret"] = "***"
        return data

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so settings are loaded only once during the application lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()
