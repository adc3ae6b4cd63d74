"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.

Required variables fail startup if missing.
ARI credentials are required only when telephony bridging is enabled.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from webphone.config.constants import RELAY


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API bind host")
    api_port: int = Field(default=3000, ge=1, le=65535, description="API port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )

    # Session Configuration
    max_sessions: int = Field(
        default=RELAY.MAX_SESSIONS,
        ge=2,
        le=10000,
        description="Maximum concurrently connected clients",
    )
    max_protocol_violations: int = Field(
        default=RELAY.MAX_PROTOCOL_VIOLATIONS,
        ge=1,
        le=100,
        description="Protocol violations tolerated before a session is torn down",
    )
    auto_pair: bool = Field(
        default=True,
        description="Pair an untargeted offer with the longest-waiting idle client",
    )

    # Telephony (Asterisk ARI)
    telephony_enabled: bool = Field(
        default=False,
        description="Bridge the offering leg through the PBX",
    )
    ari_base_url: str = Field(
        default="http://localhost:8088/ari", description="ARI REST base URL"
    )
    ari_username: str | None = Field(default=None, description="ARI username")
    ari_password: str | None = Field(default=None, description="ARI password")
    ari_app: str = Field(default=RELAY.ARI_APP, description="Stasis application name")
    ari_app_args: str = Field(
        default=RELAY.ARI_APP_ARGS, description="Stasis arguments for new channels"
    )
    ari_endpoint: str = Field(
        default="PJSIP/1001",
        description="Endpoint dialled for the PBX leg of each call",
    )
    ari_timeout_s: float = Field(
        default=RELAY.ARI_TIMEOUT_S,
        gt=0,
        le=120,
        description="Per-request ARI timeout in seconds",
    )

    # Observability
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    @field_validator("ari_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the ARI base URL."""
        return v.rstrip("/")

    def model_post_init(self, __context) -> None:
        """Validate conditional requirements after model creation."""
        if self.telephony_enabled:
            if not self.ari_username or not self.ari_password:
                raise ValueError(
                    "ari_username and ari_password are required "
                    "when telephony_enabled=true"
                )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
