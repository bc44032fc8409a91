from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    QUOTE_DB_URL: str = "sqlite+aiosqlite:///./titlequote.db"

    # --- Minimal B2B Auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    # --- LVIS rate calculator ---
    LVIS_BASE_URL: str = "https://calculator.lvis.firstam.com"
    LVIS_PRODUCT_LIST_PATH: str = "/ProductList"
    LVIS_RATE_CALC_PATH: str = "/"
    LVIS_CLIENT_CUSTOMER_ID: str = "FNTE"

    # OAuth client credentials (Microsoft identity platform).
    # Either set LVIS_TOKEN_URL directly or just the tenant id.
    LVIS_TOKEN_URL: str | None = None
    LVIS_TENANT_ID: str | None = None
    LVIS_CLIENT_ID: str | None = None
    LVIS_CLIENT_SECRET: str | None = None
    LVIS_SCOPE: str | None = None
    LVIS_TOKEN_REFRESH_MARGIN_S: int = 300

    # --- Negotiation ---
    SESSION_TTL_HOURS: int = 24
    ROUND_TIMEOUT_S: float = 60.0

    # --- HTTP resilience ---
    HTTP_TIMEOUT_S: float = 30.0
    HTTP_MAX_RETRIES: int = 1
    HTTP_BACKOFF_BASE_S: float = 0.5
    HTTP_CIRCUIT_FAIL_THRESHOLD: int = 5
    HTTP_CIRCUIT_RESET_S: float = 60.0

    # --- Session store breaker ---
    STORE_CIRCUIT_FAIL_THRESHOLD: int = 3
    STORE_CIRCUIT_RESET_S: float = 30.0

    # --- Scheduler tuning ---
    SESSION_SWEEP_ENABLED: bool = True
    SESSION_SWEEP_INTERVAL_MINUTES: int = 60

    @property
    def lvis_token_url(self) -> str | None:
        if self.LVIS_TOKEN_URL:
            return self.LVIS_TOKEN_URL
        if self.LVIS_TENANT_ID:
            return f"https://login.microsoftonline.com/{self.LVIS_TENANT_ID}/oauth2/v2.0/token"
        return None


settings = Settings()
