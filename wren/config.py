from decimal import Decimal
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

DEVNET_URL = "https://api.devnet.solana.com"
LAMPORTS_PER_SOL = 1_000_000_000


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="WREN_",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8787, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="Log renderer: json, console, or auto (console on a tty)")

    # Ledger
    solana_rpc_url: str = Field(default=DEVNET_URL, description="Solana JSON-RPC endpoint")
    solana_commitment: str = Field(default="confirmed", description="Commitment used for reads")
    rpc_timeout_seconds: float = Field(default=30.0, description="HTTP timeout for RPC calls")
    rpc_max_retries: int = Field(default=3, ge=1, description="Transport-level retries per RPC call")

    # Shared ledger accounts (base58)
    token_mint_address: str = Field(default="", description="Wren token mint address")
    chest_secret_key: str = Field(default="", description="Secret key of the chest that funds airdrops")
    nonce_account_address: str = Field(default="", description="Durable nonce account address")
    nonce_authority_secret_key: str = Field(default="", description="Secret key of the nonce authority")

    # Turnkey
    turnkey_api_base_url: str = Field(default="https://api.turnkey.com", description="Turnkey API base URL")
    turnkey_api_public_key: str = Field(default="", description="Turnkey API public key (compressed hex)")
    turnkey_api_private_key: str = Field(default="", description="Turnkey API private key (hex)")
    turnkey_organization_id: str = Field(default="", description="Parent Turnkey organization id")
    turnkey_timeout_seconds: float = Field(default=15.0, description="HTTP timeout for Turnkey calls")

    # Storage
    database_path: Path = Field(default=BASE_DIR / "data" / "wren.db", description="SQLite database file")
    redis_url: str = Field(
        default="",
        description="Redis connection string for the session store; in-process cache when empty",
    )
    session_ttl_seconds: int = Field(default=60 * 60, ge=1, description="Session lifetime")
    session_cache_size: int = Field(default=10_000, description="Max in-process sessions")

    # Submission
    submit_max_attempts: int = Field(default=2, ge=1, description="Envelope attempts for sendTransaction")
    submit_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-attempt send timeout")
    submit_retry_interval_seconds: float = Field(default=0.0, ge=0, description="Delay between send attempts")
    send_max_retries: int = Field(default=2, ge=0, description="maxRetries passed to sendTransaction")
    confirm_timeout_seconds: float = Field(default=3.0, gt=0, description="Best-effort confirmation window")
    token_account_confirm_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Confirmation window for token-account creation",
    )

    # Airdrops
    airdrop_amount: Decimal = Field(default=Decimal("1"), description="Wren tokens dropped per request")
    airdrop_wait_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How long an airdrop waits for the token account to exist",
    )
    sol_airdrop_lamports: int = Field(default=LAMPORTS_PER_SOL, description="Test SOL requested for new wallets")
    sol_airdrop_min_balance_lamports: int = Field(
        default=LAMPORTS_PER_SOL // 2,
        description="Balance below which new wallets are funded",
    )

    @property
    def has_ledger_accounts(self) -> bool:
        return all(
            (
                self.token_mint_address,
                self.chest_secret_key,
                self.nonce_account_address,
                self.nonce_authority_secret_key,
            )
        )

    @property
    def has_turnkey_key(self) -> bool:
        return bool(self.turnkey_api_private_key and self.turnkey_api_public_key)


# Global settings instance
settings = Settings()
