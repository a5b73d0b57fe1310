"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short durations,
    days for the session lifetime) to make configuration intuitive.
    Secrets are not part of this model; they come from Vault at startup.
    """

    # Magic link settings
    magic_link_expiry_minutes: int = Field(
        default=15,
        description="How long magic links remain valid",
        ge=5,
        le=60,
    )

    # Session settings
    session_expiry_days: int = Field(
        default=7,
        description="Session credential lifetime in days",
        ge=1,
        le=90,
    )
    session_refresh_threshold_minutes: int = Field(
        default=60,
        description="Re-issue the session if less than this many minutes remain",
        ge=1,
    )

    # Rate limiting (per email)
    rate_limit_attempts: int = Field(
        default=3,
        description="Max magic link requests per email per window",
        ge=1,
        le=20,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=1,
        le=60,
    )
    rate_limit_backend: str = Field(
        default="memory",
        description="'memory' (per process) or 'valkey' (shared across instances)",
    )

    # Policy
    welcome_email_failure_fatal: bool = Field(
        default=False,
        description="Fail verification when the welcome email cannot be sent",
    )

    # Application
    environment: str = Field(
        default="development",
        description="Deployment environment; 'production' turns on Secure cookies",
    )
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for magic link generation",
    )
    app_name: str = Field(
        default="Starter Kit",
        description="Application name for emails",
    )
    email_provider: str = Field(
        default="console",
        description="Email sender variant: console, gateway or smtp",
    )

    # Page guards
    login_path: str = "/login"
    dashboard_path: str = "/dashboard"
    protected_page_prefixes: list[str] = Field(default_factory=lambda: ["/dashboard", "/account"])
    guest_page_prefixes: list[str] = Field(default_factory=lambda: ["/login", "/register"])

    @property
    def cookie_secure(self) -> bool:
        return self.environment == "production"

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_expiry_days * 24 * 3600
