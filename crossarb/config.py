"""Configuration management for the cross-exchange arbitrage engine."""

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError


class ExchangeAccount(BaseModel):
    """Exchange account configuration."""
    key: str = ""
    secret: str = ""
    password: Optional[str] = None
    sandbox: bool = True  # Default to sandbox for safety
    enabled: bool = True


class DetectorConfig(BaseModel):
    """Opportunity detection configuration."""
    min_spread_percent: float = 0.8
    fee_rate: float = 0.001  # 0.1% per leg
    max_book_age_ms: int = 10000
    book_depth: int = 5

    @field_validator("fee_rate")
    @classmethod
    def _check_fee_rate(cls, value: float) -> float:
        if not 0 <= value < 1:
            raise ValueError("fee_rate must be in [0, 1)")
        return value

    @field_validator("max_book_age_ms", "book_depth")
    @classmethod
    def _check_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


class ExecutionConfig(BaseModel):
    """Execution configuration."""
    order_size_quote: float = 100.0
    paper_trading: bool = True

    @field_validator("order_size_quote")
    @classmethod
    def _check_order_size(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("order_size_quote must be positive")
        return value


class ScanConfig(BaseModel):
    """Scan cadence and pair universe."""
    interval_ms: int = 3000
    performance_interval_s: int = 300
    trading_pairs: List[str] = ["BTC/USDT", "ETH/USDT"]

    @field_validator("interval_ms", "performance_interval_s")
    @classmethod
    def _check_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("trading_pairs")
    @classmethod
    def _check_pairs(cls, value: List[str]) -> List[str]:
        for pair in value:
            if pair.count("/") != 1:
                raise ValueError(f"Invalid pair format: {pair}. Expected format: BTC/USDT")
        return value


class LedgerConfig(BaseModel):
    """Performance ledger configuration."""
    history_size: int = 100


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "logs/crossarb.log"
    serialize: bool = False


class Config(BaseModel):
    """Main configuration model."""
    exchanges: Dict[str, ExchangeAccount] = Field(default_factory=dict)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def enabled_exchanges(self) -> Dict[str, ExchangeAccount]:
        """Get accounts that are switched on."""
        return {name: acct for name, acct in self.exchanges.items() if acct.enabled}

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            config_str = f.read()

        # Substitute environment variables
        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        try:
            config_data = yaml.safe_load(config_str) or {}
            if not isinstance(config_data, dict):
                raise ConfigError(f"Invalid config {config_path}: top level must be a mapping")
            return cls(**config_data)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigError(f"Invalid config {config_path}: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build configuration from environment variables.

        Recognised variables: MIN_SPREAD_PERCENTAGE, ORDER_SIZE_USD,
        CHECK_INTERVAL_MS, PAPER_TRADING, TRADING_PAIRS, LOG_LEVEL and
        <VENUE>_API_KEY / _API_SECRET / _API_PASSPHRASE / _SANDBOX
        for binance, kucoin, gateio and bitfinex.
        """
        env = os.environ if environ is None else environ

        exchanges = {}
        for venue in ("binance", "kucoin", "gateio", "bitfinex"):
            prefix = venue.upper()
            key = env.get(f"{prefix}_API_KEY")
            secret = env.get(f"{prefix}_API_SECRET")
            if not key or not secret:
                continue
            exchanges[venue] = ExchangeAccount(
                key=key,
                secret=secret,
                password=env.get(f"{prefix}_API_PASSPHRASE"),
                sandbox=env.get(f"{prefix}_SANDBOX", "false").lower() == "true",
            )

        scan = ScanConfig()
        if env.get("TRADING_PAIRS"):
            scan_pairs = [p.strip() for p in env["TRADING_PAIRS"].split(",") if p.strip()]
        else:
            scan_pairs = scan.trading_pairs

        try:
            return cls(
                exchanges=exchanges,
                detector=DetectorConfig(
                    min_spread_percent=float(env.get("MIN_SPREAD_PERCENTAGE", 0.8)),
                ),
                execution=ExecutionConfig(
                    order_size_quote=float(env.get("ORDER_SIZE_USD", 100)),
                    paper_trading=env.get("PAPER_TRADING", "true").lower() == "true",
                ),
                scan=ScanConfig(
                    interval_ms=int(env.get("CHECK_INTERVAL_MS", 3000)),
                    trading_pairs=scan_pairs,
                ),
                logging=LoggingConfig(level=env.get("LOG_LEVEL", "INFO").upper()),
            )
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid environment configuration: {e}") from e


def get_config(config_path: str = "config.yaml") -> Config:
    """Get configuration instance."""
    return Config.load_from_file(config_path)
