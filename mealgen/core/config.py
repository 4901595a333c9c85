from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials (empty = provider not configured)
    groq_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    together_api_key: str = ""
    huggingface_api_key: str = ""

    # Gateway behaviour
    rate_limit_cooldown_seconds: float = 300.0  # 5 minutes after a 429
    provider_timeout_seconds: float = 60.0
    consensus_max_providers: int = 3

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    def provider_api_keys(self) -> dict[str, str]:
        """Mapping of provider id → API key, as consumed by the credential store."""
        return {
            "groq": self.groq_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "together": self.together_api_key,
            "huggingface": self.huggingface_api_key,
        }


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.rate_limit_cooldown_seconds <= 0:
        errors.append("RATE_LIMIT_COOLDOWN_SECONDS must be positive")

    if settings.app_env == "production":
        if not any(settings.provider_api_keys().values()):
            errors.append("At least one provider API key (e.g. GROQ_API_KEY) must be set")
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
