"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LedgerMode(str, Enum):
    """Ledger operation mode."""

    MOCK = "mock"
    RPC = "rpc"


class ProverMode(str, Enum):
    """Proof backend."""

    MOCK = "mock"
    SNARKJS = "snarkjs"


class DatastoreBackend(str, Enum):
    """Datastore backend for the ledger mirror."""

    MEMORY = "memory"
    MONGODB = "mongodb"


class ProtocolSettings(BaseSettings):
    """
    Protocol parameters fixed at deployment.

    Tree depths and per-epoch limits must match the circuits the prover uses.
    """

    model_config = SettingsConfigDict(env_prefix="PROTOCOL_")

    global_state_tree_depth: int = Field(default=16, ge=1, le=32)
    user_state_tree_depth: int = Field(default=16, ge=1, le=32)
    epoch_tree_depth: int = Field(default=32, ge=1, le=64)
    num_epoch_key_nonce_per_epoch: int = Field(default=3, ge=1)
    max_reputation_budget: int = Field(default=10, ge=1)
    num_attestations_per_proof: int = Field(default=5, ge=1)
    epoch_length: int = Field(default=30, ge=1, description="Epoch length in seconds")


class SyncSettings(BaseSettings):
    """Ledger replay configuration."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    poll_interval_seconds: float = 1.0
    wait_timeout_seconds: float = 30.0
    wait_max_attempts: int = 20
    backoff_min_seconds: float = 0.05
    backoff_max_seconds: float = 2.0
    verify_indexed_proofs: bool = False


class ProverSettings(BaseSettings):
    """Prover configuration."""

    model_config = SettingsConfigDict(env_prefix="PROVER_")

    mode: ProverMode = ProverMode.MOCK
    build_dir: Path = Field(default_factory=lambda: Path.cwd() / "zksnarkBuild")
    snarkjs_command: str = "npx snarkjs"
    max_concurrency: int = Field(default=1, ge=1)


class MongoSettings(BaseSettings):
    """MongoDB configuration."""

    model_config = SettingsConfigDict(env_prefix="MONGODB_")

    host: str = "localhost"
    port: int = 27017
    user: str = "repstate"
    password: SecretStr = SecretStr("repstate_mongo_password")
    db: str = "repstate"

    @property
    def uri(self) -> str:
        """Generate MongoDB connection URI."""
        pwd = self.password.get_secret_value()
        return f"mongodb://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}?authSource=admin"


class DatastoreSettings(BaseSettings):
    """Datastore selection."""

    model_config = SettingsConfigDict(env_prefix="DATASTORE_")

    backend: DatastoreBackend = DatastoreBackend.MEMORY
    mongodb: MongoSettings = Field(default_factory=MongoSettings)


class LedgerSettings(BaseSettings):
    """Ledger integration configuration."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    mode: LedgerMode = LedgerMode.MOCK
    rpc_url: str = ""
    contract_address: str = ""


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False

    protocol: ProtocolSettings = Field(default_factory=ProtocolSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    prover: ProverSettings = Field(default_factory=ProverSettings)
    datastore: DatastoreSettings = Field(default_factory=DatastoreSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
