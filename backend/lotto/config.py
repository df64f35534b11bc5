from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "wealthwars-lotto-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Wealth Wars Lotto")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/wealthwars_dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json | console

    # Balance oracle
    solana_rpc_url: str = os.getenv("SOLANA_RPC_URL", "https://api.devnet.solana.com")
    wealth_mint: str = os.getenv("WEALTH_MINT", "56vQJqn9UekqgV52ff2DYvTqxK74sHNxAQVZgXeEpump")
    balance_cache_ttl_seconds: float = float(os.getenv("BALANCE_CACHE_TTL_SECONDS", "30"))
    balance_cache_max_entries: int = int(os.getenv("BALANCE_CACHE_MAX_ENTRIES", "1000"))
    balance_lookup_retries: int = int(os.getenv("BALANCE_LOOKUP_RETRIES", "2"))
    external_timeout_seconds: float = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "10"))

    # Wallet linking
    link_challenge_ttl_seconds: int = int(os.getenv("LINK_CHALLENGE_TTL_SECONDS", "600"))  # 10 min

    # Round authority + economics
    lotto_authority: str = os.getenv("LOTTO_AUTHORITY", "house")
    lotto_authority_secret: str = os.getenv("LOTTO_AUTHORITY_SECRET", "dev-authority-change-me")
    default_fee_bps: int = int(os.getenv("DEFAULT_FEE_BPS", "2000"))  # 20% retained by the house
    min_entries_to_settle: int = int(os.getenv("MIN_ENTRIES_TO_SETTLE", "2"))
    allow_multiple_entries: bool = os.getenv("ALLOW_MULTIPLE_ENTRIES", "0") == "1"
    join_requires_balance: bool = os.getenv("JOIN_REQUIRES_BALANCE", "0") == "1"

    # Payouts: empty url => in-process recording sink (dev only)
    payout_service_url: str = os.getenv("PAYOUT_SERVICE_URL", "")
    payout_service_token: str = os.getenv("PAYOUT_SERVICE_TOKEN", "")

    # Background sweeper (deadline close + challenge eviction); 0 disables
    sweep_interval_seconds: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "15"))

    # Participant access tokens
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "60"))

settings = Settings()
