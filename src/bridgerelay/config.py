"""Application configuration using pydantic-settings.

All values come from environment variables (or a local .env file).
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

WEI_PER_NATIVE = Decimal(10**18)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    dry_run: bool = Field(
        default=True, description="Use the simulated chain (no real transactions)"
    )

    # ======================
    # Record store
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/relayer.db",
        description="Database connection URL",
    )
    record_store: str = Field(
        default="sql", description="Deposit address store backend: sql or json"
    )
    json_store_path: str = Field(
        default="./data/deposit_addresses.json", description="Path of the json store"
    )
    master_key: Optional[str] = Field(
        default=None, description="Fernet key used to encrypt custodial keys at rest"
    )
    persist_fingerprints: bool = Field(
        default=False, description="Keep seen deposit fingerprints across restarts"
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3001, description="API server port")

    # ======================
    # Source chain
    # ======================
    source_rpc_url: str = Field(
        default="https://data-seed-prebsc-1-s1.binance.org:8545/",
        description="Source chain JSON-RPC URL",
    )
    source_chain_id: int = Field(default=97, description="Source chain EIP-155 id")
    source_network_name: str = Field(default="BSC Testnet", description="Source network label")
    token_address: str = Field(
        default="0x3D40fF7Ff9D5B01Cb5413e7E5C18Aa104A6506a5",
        description="OFT token contract watched and bridged",
    )
    supported_tokens: str = Field(
        default="Mock USDC,Mock MOVE", description="Comma-separated token labels"
    )
    rpc_timeout: float = Field(default=30.0, description="Per-request RPC timeout (seconds)")

    # ======================
    # Bridge
    # ======================
    operator_private_key: Optional[str] = Field(
        default=None, description="Hot wallet key that funds deposit addresses with gas"
    )
    gas_funding_amount: Decimal = Field(
        default=Decimal("0.01"), description="Native amount sent to each deposit address"
    )
    destination_eid: int = Field(
        default=40325, description="Messaging endpoint id of the destination chain"
    )
    fallback_native_fee: Decimal = Field(
        default=Decimal("0.005"), description="Native fee used when quoting fails"
    )
    use_fallback_fee: bool = Field(
        default=True, description="Send with the fallback fee when quoting fails"
    )
    send_gas_limit: int = Field(
        default=500_000, description="Gas limit for the send when estimation fails"
    )
    confirmation_timeout: float = Field(
        default=120.0, description="Timeout for every on-chain confirmation wait"
    )
    receipt_poll_interval: float = Field(
        default=2.0, description="Seconds between receipt polls"
    )
    lock_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds a bridge waits for its deposit address to be free",
    )

    # ======================
    # Scanner
    # ======================
    scan_interval: float = Field(default=10.0, description="Seconds between scan ticks")
    scan_concurrency: int = Field(
        default=5, ge=1, description="Concurrent balance checks per tick"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_operator(self) -> bool:
        """Check if the gas funding account is configured."""
        return bool(self.operator_private_key)

    @property
    def gas_funding_wei(self) -> int:
        return int(self.gas_funding_amount * WEI_PER_NATIVE)

    @property
    def fallback_fee_wei(self) -> int:
        return int(self.fallback_native_fee * WEI_PER_NATIVE)

    @property
    def token_labels(self) -> list[str]:
        return [t.strip() for t in self.supported_tokens.split(",") if t.strip()]

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "record_store": self.record_store,
            "keys_encrypted": bool(self.master_key),
            "operator_configured": self.has_operator,
            "source_chain": {
                "network": self.source_network_name,
                "chain_id": self.source_chain_id,
                "rpc": self.source_rpc_url,
                "token": self.token_address,
            },
            "bridge": {
                "destination_eid": self.destination_eid,
                "gas_funding_amount": str(self.gas_funding_amount),
                "fallback_native_fee": str(self.fallback_native_fee),
                "use_fallback_fee": self.use_fallback_fee,
            },
            "scanner": {
                "interval": self.scan_interval,
                "concurrency": self.scan_concurrency,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
