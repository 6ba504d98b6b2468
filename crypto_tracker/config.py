from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # CORS allowed origins (add your frontend URLs here)
    allowed_origins: List[str] = [
        "http://localhost:5173",  # Vite dev
        "http://localhost:3000",  # crypto-tracker frontend
    ]

    # CoinGecko upstream
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str | None = None
    vs_currency: str = "inr"

    # Outbound call limits
    upstream_timeout: float = 15.0  # seconds, per call
    max_concurrency: int = 10
    max_connections: int = 20
    max_keepalive_connections: int = 10

    # How often a running /fetch checks whether its caller went away
    disconnect_poll_interval: float = 0.5

    # Drop repeated ids before fetching (first occurrence wins)
    dedupe_ids: bool = False

    log_level: str = "INFO"

    # Load .env file automatically if present
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

# Create a single settings instance
settings = Settings()
