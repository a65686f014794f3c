from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.production"), extra="ignore")

    ENVIRONMENT: str = "LOCAL"

    LOG_LEVEL: str = "INFO"
    CORS_ALLOWED_ORIGINS: str = ""

    # Seed data loaded at startup, both optional
    MEASUREMENT_DATA_FP: str | None = None
    ACTORS_FP: str | None = None

    # Verification
    VERIFICATION_RELATIVE_TOLERANCE: float = 0.05
    VERIFICATION_ABSOLUTE_TOLERANCE: float = 0.0
    ANOMALY_POLICY: str = "escalate"

    # Ledger synchronisation
    LEDGER_CONFIRMATION_TIMEOUT_SECONDS: float = 30.0
    LEDGER_POLL_INTERVAL_SECONDS: float = 0.25
    LEDGER_SUBMIT_MAX_ATTEMPTS: int = 3
    LEDGER_SUBMIT_BACKOFF_SECONDS: float = 0.2
    LEDGER_CONFIRMATION_DELAY_SECONDS: float = 0.0

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins into a clean list."""
        if not self.CORS_ALLOWED_ORIGINS:
            return []
        return [
            o.strip().strip("'\"").rstrip("/")
            for o in self.CORS_ALLOWED_ORIGINS.split(",")
            if o.strip()
        ]


settings = Settings()
