"""Settings and configuration management."""

import logging
import secrets
import warnings
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Insecure default values that should not be used in production
_INSECURE_SECRET_KEY = "change-me-in-production"

_MIN_SECRET_KEY_LENGTH = 32

DEFAULT_SYSTEM_PROMPT = """You are "FitBot", a friendly and professional AI assistant for "Peak Performance Fitness".
Your knowledge is strictly limited to the information provided here.
Do not answer questions about other topics, companies, or fitness advice that contradicts our methods.
If you don't know the answer, politely say "I can't find that information, but our staff at the front desk would be happy to help."

**Company Information:**
- **Name:** Peak Performance Fitness
- **Location:** 123 Fitness Lane, Wellness City, 10101
- **Contact:** 555-0101 or contact@peakperformance.fit
- **Hours:** Mon-Fri 5am-10pm, Sat-Sun 7am-8pm

**Membership Plans:**
1.  **Basic:** $29/month. Access to all gym equipment.
2.  **Plus:** $49/month. Includes Basic + all group classes.
3.  **Pro:** $79/month. Includes Plus + 2 personal training sessions per month.

**Group Classes Schedule:**
- **Yoga:** Mon/Wed 6pm, Sat 9am.
- **Spin:** Tue/Thu 7pm, Sat 10am.
- **HIIT:** Mon/Fri 5:30am.

**Personal Training:**
- Trainers: Alex (specializes in weight loss), Sam (specializes in muscle gain).
- Sessions can be booked at the front desk.
- Pro members get 2 free sessions, otherwise, it's $50/session.
"""


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application Settings
    app_name: str = Field("Chatline", description="Application name")
    debug: bool = Field(False, description="Debug mode")
    production: bool = Field(
        False,
        description="Production mode - enables strict security validation",
    )
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Sanitize sensitive data from logs")
    cors_origins: str = Field(
        "http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///chatline.db",
        description="Database URL (sqlite:///path.db or sqlite:///:memory:)",
    )

    # Auth
    secret_key: str = Field(
        default=_INSECURE_SECRET_KEY, description="Secret key for token signing"
    )
    jwt_algorithm: str = Field("HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(
        60, description="Access token expiration in minutes"
    )
    rate_limit_auth: str = Field(
        "10/minute", description="Rate limit applied to registration and login"
    )

    # AI backend
    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    openai_model: str = Field("gpt-4o-mini", description="Chat completion model")
    ai_timeout_seconds: float = Field(
        8.0,
        gt=0,
        description="Deadline for a single upstream completion call",
    )
    system_prompt: str = Field(
        DEFAULT_SYSTEM_PROMPT,
        description="Fixed instruction prepended to every transcript",
    )

    # Real-time channel
    ws_send_timeout_seconds: float = Field(
        2.0, gt=0, description="Per-peer send deadline before the peer is dropped"
    )
    ws_queue_size: int = Field(
        100, ge=1, description="Pending events buffered per connected peer"
    )

    @property
    def has_secure_secret_key(self) -> bool:
        """Check if secret key meets security requirements.

        Requirements:
        - Not the insecure default value
        - At least 32 characters long
        """
        if self.secret_key == _INSECURE_SECRET_KEY:
            return False
        if len(self.secret_key) < _MIN_SECRET_KEY_LENGTH:
            return False
        return True

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @staticmethod
    def generate_secret_key() -> str:
        """Generate a cryptographically secure secret key."""
        return secrets.token_urlsafe(48)

    def model_post_init(self, __context) -> None:
        """Validate production config."""
        self._validate_production_config()

    def _validate_production_config(self) -> None:
        """Validate configuration for production safety."""
        issues = []

        if not self.has_secure_secret_key:
            if self.secret_key == _INSECURE_SECRET_KEY:
                msg = (
                    "SECRET_KEY is using insecure default value. "
                    f"Set SECRET_KEY environment variable to a secure random string "
                    f"(minimum {_MIN_SECRET_KEY_LENGTH} characters)."
                )
            else:
                msg = (
                    f"SECRET_KEY is too short ({len(self.secret_key)} chars). "
                    f"Minimum length is {_MIN_SECRET_KEY_LENGTH} characters."
                )
            issues.append(msg)

        if self.debug and self.production:
            issues.append("DEBUG mode is enabled in production. Set DEBUG=false.")

        if not issues:
            return

        if self.production:
            raise ValueError(
                "Insecure configuration not allowed (production mode enabled):\n"
                + "\n".join(f"  - {issue}" for issue in issues)
            )
        for issue in issues:
            warnings.warn(f"Security: {issue}", stacklevel=3)
            logger.warning("SECURITY WARNING: %s", issue)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
