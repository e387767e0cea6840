from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalize legacy DSN spellings."""

        super().model_post_init(__context)

        # SQLAlchemy expects postgresql://
        if self.database_url.startswith("postgres://"):
            object.__setattr__(
                self,
                "database_url",
                self.database_url.replace("postgres://", "postgresql://", 1),
            )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="json, console, or auto (console only at DEBUG)")

    # Chain
    rpc_url: str = Field(default="http://127.0.0.1:8545", description="JSON-RPC endpoint of the chain node")
    chain_id: int = Field(default=1, description="Expected chain id; verified against the node before a run")
    rpc_timeout_seconds: float = Field(default=30.0, description="Timeout for a single RPC request")
    rpc_max_attempts: int = Field(default=3, description="Attempts for read-only RPC calls on network errors")

    # Storage
    database_url: str = Field(
        default="sqlite:///transfers.db",
        validation_alias=AliasChoices("database_url", "dsn"),
        description="SQLAlchemy DSN of the transaction record store",
    )

    # Signing account
    key_file: str = Field(default="", description="Encrypted JSON keystore holding the payer key")
    key_password: str = Field(default="", description="Password for key_file")
    private_key: str = Field(default="", description="Raw hex private key, used when key_file is empty")

    # Transaction assembly
    transfer_kind: str = Field(default="standard", description="standard or alternate_asset")
    token_address: str = Field(default="", description="Settlement token contract for alternate_asset transfers")
    gas_limit: int = Field(default=21000, description="Gas limit for native value transfers")
    token_gas_limit: int = Field(default=100000, description="Gas limit for settlement token transfers")

    # Lifecycle timing
    nonce_wait_seconds: float = Field(default=5.0, description="Throttle after each nonce allocation")
    receipt_poll_seconds: float = Field(default=15.0, description="Interval between receipt monitor ticks")
    monitor_timeout_seconds: float = Field(default=600.0, description="Overall deadline for confirmations")

    # Policy
    release_nonce_on_fatal: bool = Field(
        default=True,
        description="Drop the nonce from the live set when a broadcast fails fatally",
    )
    balance_safety_factor: int = Field(
        default=10,
        description="Gas price multiplier used by the balance pre-flight check",
    )
    recover_pending: bool = Field(
        default=False,
        description="Re-register Generated records with the monitor before a run",
    )

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"auto", "json", "console"}:
            raise ValueError("log_format must be 'auto', 'json' or 'console'")
        return value

    @field_validator("transfer_kind")
    @classmethod
    def _check_transfer_kind(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"standard", "alternate_asset"}:
            raise ValueError("transfer_kind must be 'standard' or 'alternate_asset'")
        return value

    @property
    def effective_gas_limit(self) -> int:
        if self.transfer_kind == "alternate_asset":
            return self.token_gas_limit
        return self.gas_limit


settings = Settings()
