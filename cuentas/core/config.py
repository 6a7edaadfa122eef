from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_RATE_PROVIDERS = {"static", "external-http"}


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, DB_FILENAME, RATE_PROVIDER, STATIC_USD_RATE, RATES_CACHE_TTL_SECONDS).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Cuentas"
    debug: bool = True
    version: str = "0.1.0"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "cuentas.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided

    # Reference rates (bolivars per 1 USD / 1 EUR)
    # Allowed providers: 'static' (fixed values below), 'external-http' (BCV mirrors)
    rate_provider: str = "static"
    static_usd_rate: Decimal = Decimal("40.00")
    static_eur_rate: Decimal = Decimal("43.50")
    bcv_primary_url: AnyHttpUrl = "https://api.exchangedyn.com/markets/quotes/usdves/bcv"
    bcv_fallback_url: AnyHttpUrl = "https://bcvapi.tech/api/v1/dolar/public"
    http_timeout_seconds: float = 5.0
    rates_cache_ttl_seconds: int = 3600

    # Public account links
    share_token_bytes: int = 16
    share_url_base: str = "/cuenta"

    # Ledger
    balance_tolerance: Decimal = Decimal("0.005")
    quote_id_digits: int = 5

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if self.rate_provider not in ALLOWED_RATE_PROVIDERS:
            raise ValueError(
                f"Unsupported rate_provider '{self.rate_provider}'. Allowed: {ALLOWED_RATE_PROVIDERS}"
            )
        if self.share_token_bytes < 16:
            raise ValueError("share_token_bytes must be at least 16")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
