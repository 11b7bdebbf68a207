"""Configuration management for the community pot engine."""
from decimal import Decimal
from typing import Literal, Optional
import os
from pydantic import BaseModel, Field, model_validator
from dotenv import load_dotenv

DEFAULT_POLYGON_USDC = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
DEFAULT_AMOY_USDC = "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582"


class DatabaseConfig(BaseModel):
    """Database configuration settings."""
    url: str = Field(
        default="sqlite+aiosqlite:///community_pot.db",
        description="Database connection URL"
    )


class LoggingConfig(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="File name under logs/ for a persistent copy of the log"
    )


class PotConfig(BaseModel):
    """Defaults applied when seeding a new cycle."""
    default_amount: Decimal = Field(
        default=Decimal("100.00"),
        gt=0,
        description="Pot total distributed each cycle"
    )
    default_max_participants: int = Field(
        default=10,
        gt=0,
        description="Participant cap for a new cycle"
    )
    default_test_mode: bool = Field(
        default=True,
        description="Whether new cycles pay out on the test network"
    )
    share_decimals: int = Field(
        default=2,
        ge=0,
        le=18,
        description="Decimal places of a single share"
    )
    timezone: str = Field(
        default="Europe/Berlin",
        description="Timezone the distribution schedule is expressed in"
    )
    distribution_weekday: int = Field(
        default=7,  # Sunday, ISO numbering
        ge=1,
        le=7,
        description="ISO weekday of the distribution"
    )
    distribution_hour: int = Field(default=16, ge=0, le=23)
    distribution_minute: int = Field(default=30, ge=0, le=59)


class PayoutConfig(BaseModel):
    """Payout executor settings."""
    secret: Optional[str] = Field(
        default=None,
        description="Shared secret guarding the payout trigger"
    )
    max_attempts: int = Field(
        default=5,
        gt=0,
        description="Real claims of one cycle before it is marked failed"
    )
    transfer_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Upper bound on a single transfer, including confirmation"
    )
    lease_seconds: int = Field(
        default=900,
        gt=0,
        description="How long a claim blocks other executors from resuming a cycle"
    )

    @model_validator(mode="after")
    def _lease_outlives_transfer(self) -> "PayoutConfig":
        # The lease is renewed before each transfer and must cover it entirely
        if self.lease_seconds <= self.transfer_timeout_seconds:
            raise ValueError(
                f"lease_seconds ({self.lease_seconds}) must exceed "
                f"transfer_timeout_seconds ({self.transfer_timeout_seconds:g})"
            )
        return self


class TransferConfig(BaseModel):
    """Transfer executor settings."""
    backend: Literal["erc20", "relay"] = Field(
        default="erc20",
        description="Which transfer executor to use"
    )
    rpc_url: Optional[str] = Field(default=None, description="Mainnet RPC URL")
    testnet_rpc_url: Optional[str] = Field(default=None, description="Testnet RPC URL")
    private_key: Optional[str] = Field(
        default=None,
        description="Hex private key of the payout wallet"
    )
    token_contract: str = Field(default=DEFAULT_POLYGON_USDC)
    testnet_token_contract: str = Field(default=DEFAULT_AMOY_USDC)
    token_decimals: int = Field(default=6, ge=0)
    gas_multiplier: float = Field(default=1.2, gt=0)
    default_gas_limit: int = Field(default=100000, gt=0)
    receipt_timeout_seconds: float = Field(default=120.0, gt=0)
    relay_url: Optional[str] = Field(default=None, description="Payout relay base URL")
    relay_api_key: Optional[str] = Field(default=None, description="Payout relay API key")


class AppConfig(BaseModel):
    """Main application configuration."""
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig,
        description="Database settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings"
    )
    pot: PotConfig = Field(
        default_factory=PotConfig,
        description="Cycle defaults"
    )
    payout: PayoutConfig = Field(
        default_factory=PayoutConfig,
        description="Payout settings"
    )
    transfer: TransferConfig = Field(
        default_factory=TransferConfig,
        description="Transfer executor settings"
    )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    # Load environment variables from .env file
    load_dotenv()

    return AppConfig(
        database=DatabaseConfig(
            url=os.getenv("POT_DATABASE_URL", "sqlite+aiosqlite:///community_pot.db")
        ),
        logging=LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE")
        ),
        pot=PotConfig(
            default_amount=Decimal(os.getenv("POT_DEFAULT_AMOUNT", "100.00")),
            default_max_participants=int(os.getenv("POT_MAX_PARTICIPANTS", "10")),
            default_test_mode=_env_bool("POT_TEST_MODE", "true"),
            share_decimals=int(os.getenv("POT_SHARE_DECIMALS", "2")),
            timezone=os.getenv("POT_TIMEZONE", "Europe/Berlin"),
            distribution_weekday=int(os.getenv("POT_DISTRIBUTION_WEEKDAY", "7")),
            distribution_hour=int(os.getenv("POT_DISTRIBUTION_HOUR", "16")),
            distribution_minute=int(os.getenv("POT_DISTRIBUTION_MINUTE", "30"))
        ),
        payout=PayoutConfig(
            secret=os.getenv("COMMUNITY_POT_PAYOUT_SECRET"),
            max_attempts=int(os.getenv("PAYOUT_MAX_ATTEMPTS", "5")),
            transfer_timeout_seconds=float(os.getenv("PAYOUT_TRANSFER_TIMEOUT", "180")),
            lease_seconds=int(os.getenv("PAYOUT_LEASE_SECONDS", "900"))
        ),
        transfer=TransferConfig(
            backend=os.getenv("COMMUNITY_POT_TRANSFER_BACKEND", "erc20"),
            rpc_url=os.getenv("COMMUNITY_POT_RPC_URL"),
            testnet_rpc_url=os.getenv("COMMUNITY_POT_TESTNET_RPC_URL"),
            private_key=os.getenv("COMMUNITY_POT_PAYOUT_PRIVATE_KEY"),
            token_contract=os.getenv("COMMUNITY_POT_USDC_CONTRACT", DEFAULT_POLYGON_USDC),
            testnet_token_contract=os.getenv("COMMUNITY_POT_TESTNET_USDC_CONTRACT", DEFAULT_AMOY_USDC),
            token_decimals=int(os.getenv("COMMUNITY_POT_TOKEN_DECIMALS", "6")),
            relay_url=os.getenv("COMMUNITY_POT_RELAY_URL"),
            relay_api_key=os.getenv("COMMUNITY_POT_RELAY_API_KEY")
        )
    )
