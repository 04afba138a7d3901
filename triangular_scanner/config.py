"""
Configuration schema and loading for the triangular scanner.

The schema is validated with Pydantic; values come from a YAML file, an
optional dotted-key override dict and finally environment variables (a
``.env`` file is honoured through python-dotenv).
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

# PancakeSwap V2 on BSC mainnet
PANCAKE_FACTORY = "0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73"
PANCAKE_ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"

DEFAULT_PRIORITY_TOKENS = {
    "WBNB": "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
    "BUSD": "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56",
    "USDT": "0x55d398326f99059fF775485246999027B3197955",
    "CAKE": "0x0E09FaBB73Bd3Ade0a17ECC321fD13a19e81cE82",
    "ETH": "0x2170Ed0880ac9A755fd29B2688956BD959F933F8",
    "BTCB": "0x7130d2A12B9BCbFAe4f2634d864A1Ee1Ce3Ead9c",
    "USDC": "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",
    "DAI": "0x1AF3F329e8BE154074D8769D1FFa4eE058B1DBc3",
    "DOGE": "0xbA2aE424d960c26247Dd6c32edC70B295c744C43",
}

DEFAULT_STABLECOINS = ["BUSD", "USDT", "USDC", "DAI"]

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "SCANNER_RPC_URL": "network.rpc_url",
    "SCANNER_MIN_PROFIT": "profit.min_profit_threshold",
    "percent": "profit.min_profit_threshold",
    "SCANNER_POOLS_TO_SAMPLE": "sampling.pools_to_sample",
    "SCANNER_FULL_REFRESH_INTERVAL": "timing.full_refresh_interval",
    "SCANNER_REDIS_URL": "dispatch.redis_url",
}


class NetworkConfig(BaseModel):
    """RPC endpoint and exchange contract addresses."""

    rpc_url: str = "https://bsc-dataseed1.binance.org"
    chain_id: int = Field(default=56, ge=1)
    factory_address: str = PANCAKE_FACTORY
    router_address: str = PANCAKE_ROUTER

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v):
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError(f"Invalid RPC URL format: {v}")
        return v


class TokensConfig(BaseModel):
    """Priority token clique, stablecoins and the chain's base asset."""

    priority_tokens: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_TOKENS)
    )
    stablecoins: List[str] = Field(default_factory=lambda: list(DEFAULT_STABLECOINS))
    base_asset: str = "WBNB"

    @field_validator("priority_tokens")
    @classmethod
    def validate_priority_tokens(cls, v):
        if len(v) < 2:
            raise ValueError("At least two priority tokens are required")
        for symbol, address in v.items():
            if not (isinstance(address, str) and address.startswith("0x")):
                raise ValueError(f"Priority token {symbol} has invalid address")
        return v

    @model_validator(mode="after")
    def validate_references(self):
        missing = [s for s in self.stablecoins if s not in self.priority_tokens]
        if missing:
            raise ValueError(f"Stablecoins not among priority tokens: {missing}")
        if self.base_asset not in self.priority_tokens:
            raise ValueError(
                f"Base asset {self.base_asset} must be one of the priority tokens"
            )
        return self

    def address_of(self, symbol: str) -> str:
        return self.priority_tokens[symbol].lower()

    @property
    def base_asset_address(self) -> str:
        return self.address_of(self.base_asset)

    @property
    def stablecoin_addresses(self) -> List[str]:
        return [self.address_of(s) for s in self.stablecoins]

    @property
    def priority_addresses(self) -> List[str]:
        return [a.lower() for a in self.priority_tokens.values()]


class SamplingConfig(BaseModel):
    """Random pool sample bounds and batch sizes."""

    pools_to_sample: int = Field(default=100, ge=0)
    random_start: int = Field(default=0, ge=0)
    random_end: int = Field(default=10000, ge=0)
    batch_size: int = Field(default=20, ge=1, le=500)
    priority_batch_size: int = Field(default=5, ge=1, le=500)

    @model_validator(mode="after")
    def validate_range(self):
        if self.random_end < self.random_start:
            raise ValueError("random_end must not be below random_start")
        return self


class TimingConfig(BaseModel):
    """Timer intervals and delays, all in seconds."""

    batch_delay: float = Field(default=5.0, ge=0)
    full_refresh_interval: float = Field(default=300.0, gt=0)
    priority_refresh_interval: float = Field(default=20.0, gt=0)
    reset_interval: float = Field(default=900.0, gt=0)
    reset_check_interval: float = Field(default=60.0, gt=0)
    initial_load_retry_delay: float = Field(default=10.0, ge=0)
    pool_error_delay: float = Field(default=1.0, ge=0)

    @model_validator(mode="after")
    def validate_intervals(self):
        if self.priority_refresh_interval >= self.full_refresh_interval:
            raise ValueError(
                "priority_refresh_interval must be shorter than full_refresh_interval"
            )
        return self


class ProfitConfig(BaseModel):
    """Profitability thresholds and the cost model."""

    min_profit_threshold: Decimal = Field(default=Decimal("0.01"), ge=0)
    min_liquidity_usd: Decimal = Field(default=Decimal("50000"), ge=0)
    test_amounts: List[Decimal] = Field(
        default_factory=lambda: [
            Decimal("1"),
            Decimal("100"),
            Decimal("1000"),
            Decimal("10000"),
        ]
    )
    swap_fee: Decimal = Field(default=Decimal("0.0025"), ge=0, lt=1)
    flash_fee_numerator: int = Field(default=3, ge=0)
    flash_fee_denominator: int = Field(default=997, ge=1)
    gas_units: int = Field(default=300000, ge=0)
    gas_price_gwei: Decimal = Field(default=Decimal("6"), ge=0)
    fallback_base_asset_price: Decimal = Field(default=Decimal("600"), ge=0)
    max_concurrent_quotes: int = Field(default=10, ge=1)

    @field_validator("test_amounts")
    @classmethod
    def validate_test_amounts(cls, v):
        if not v:
            raise ValueError("test_amounts must not be empty")
        if any(a <= 0 for a in v):
            raise ValueError("test_amounts must be positive")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("test_amounts must be strictly increasing")
        return v


class DispatchConfig(BaseModel):
    """Execution queue settings."""

    enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "arbitrage"
    job_name: str = "path-test"
    deadline_minutes: int = Field(default=1, ge=1)
    min_borrow_amount: Decimal = Field(default=Decimal("1"), ge=0)
    scale_up_enabled: bool = True
    scaled_priority_offset: int = Field(default=1, ge=0)


class OutputConfig(BaseModel):
    """History, analysis and debug log files."""

    data_dir: str = "data"
    history_file: str = "arbitrage_opportunities.json"
    max_history_entries: int = Field(default=20, ge=1)
    opportunities_per_entry: int = Field(default=100, ge=1)
    analysis_enabled: bool = True
    analysis_file: str = "verification_mismatches.jsonl"
    debug_log_file: Optional[str] = "debug.log"
    debug_level: int = Field(default=1, ge=0, le=2)

    @property
    def history_path(self) -> Path:
        return Path(self.data_dir) / self.history_file

    @property
    def analysis_path(self) -> Path:
        return Path(self.data_dir) / self.analysis_file

    @property
    def debug_log_path(self) -> Optional[Path]:
        if not self.debug_log_file:
            return None
        return Path(self.data_dir) / self.debug_log_file


class ScannerConfig(BaseModel):
    """Root configuration consumed by every scanner component."""

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    profit: ProfitConfig = Field(default_factory=ProfitConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ScannerConfig":
        """Create config from dictionary, raising ConfigurationError on failure."""
        try:
            return cls.model_validate(config_dict or {})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid scanner configuration: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False)},
            ) from e


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config_dict is None:
        return {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")
    return config_dict


def set_nested_value(data: Dict[str, Any], key_path: str, value: Any) -> None:
    """Set a nested dictionary value using dot notation, creating levels."""
    keys = key_path.split(".")
    current = data
    for key in keys[:-1]:
        current = current.setdefault(key, {})
    current[keys[-1]] = value


def apply_env_overrides(
    config_dict: Dict[str, Any], environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Copy recognised environment variables into the config dict."""
    environ = os.environ if environ is None else environ
    for env_name, key_path in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            set_nested_value(config_dict, key_path, value)
    return config_dict


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ScannerConfig:
    """
    Build a validated ScannerConfig.

    Precedence, lowest first: schema defaults, YAML file, ``overrides``
    (dotted keys such as ``"profit.min_profit_threshold"``), environment.

    Raises:
        ConfigurationError: If the file is missing/invalid or validation fails
    """
    if environ is None:
        load_dotenv()

    config_dict = load_yaml_config(config_path) if config_path else {}

    for key_path, value in (overrides or {}).items():
        set_nested_value(config_dict, key_path, value)

    apply_env_overrides(config_dict, environ)
    return ScannerConfig.from_dict(config_dict)
