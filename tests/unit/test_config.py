"""Tests for the scanner configuration schema and loader."""

from decimal import Decimal
from pathlib import Path

import pytest

from triangular_scanner.config import (
    ScannerConfig,
    apply_env_overrides,
    load_config,
    load_yaml_config,
    set_nested_value,
)
from triangular_scanner.exceptions import ConfigurationError

BUNDLED_CONFIG = Path(__file__).resolve().parents[2] / "configs" / "scanner_bsc.yaml"


def test_defaults():
    config = ScannerConfig()
    assert config.profit.min_profit_threshold == Decimal("0.01")
    assert config.profit.test_amounts == [Decimal(1), Decimal(100), Decimal(1000), Decimal(10000)]
    assert config.sampling.pools_to_sample == 100
    assert config.timing.reset_interval == 900
    assert config.timing.priority_refresh_interval < config.timing.full_refresh_interval
    assert config.tokens.base_asset == "WBNB"
    assert config.output.max_history_entries == 20


def test_token_addresses_are_lowercased():
    tokens = ScannerConfig().tokens
    assert tokens.base_asset_address == "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
    assert all(a == a.lower() for a in tokens.priority_addresses)
    assert len(tokens.stablecoin_addresses) == 4


def test_bundled_config_loads():
    config = load_config(BUNDLED_CONFIG, environ={})
    assert config.network.chain_id == 56
    assert config.profit.swap_fee == Decimal("0.0025")
    assert config.dispatch.job_name == "path-test"
    assert config.output.history_path == Path("data") / "arbitrage_opportunities.json"


def test_yaml_then_overrides_then_env(tmp_path):
    path = tmp_path / "scanner.yaml"
    path.write_text(
        "profit:\n  min_profit_threshold: '0.02'\nsampling:\n  pools_to_sample: 10\n"
    )

    config = load_config(path, environ={})
    assert config.profit.min_profit_threshold == Decimal("0.02")
    assert config.sampling.pools_to_sample == 10

    config = load_config(path, overrides={"sampling.pools_to_sample": 5}, environ={})
    assert config.sampling.pools_to_sample == 5

    config = load_config(
        path,
        overrides={"sampling.pools_to_sample": 5},
        environ={"SCANNER_POOLS_TO_SAMPLE": "7", "SCANNER_MIN_PROFIT": "0.03"},
    )
    assert config.sampling.pools_to_sample == 7
    assert config.profit.min_profit_threshold == Decimal("0.03")


def test_legacy_percent_variable():
    config = load_config(environ={"percent": "0.005"})
    assert config.profit.min_profit_threshold == Decimal("0.005")


def test_empty_yaml_is_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_yaml_config(path) == {}
    assert load_config(path, environ={}).sampling.batch_size == 20


def test_missing_file():
    with pytest.raises(ConfigurationError, match="not found"):
        load_yaml_config("/nonexistent/scanner.yaml")


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("profit: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_yaml_config(path)


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_yaml_config(path)


@pytest.mark.parametrize(
    "data",
    [
        {"timing": {"priority_refresh_interval": 300, "full_refresh_interval": 300}},
        {"profit": {"test_amounts": [100, 10]}},
        {"profit": {"test_amounts": []}},
        {"profit": {"min_profit_threshold": -1}},
        {"tokens": {"base_asset": "NOPE"}},
        {"tokens": {"stablecoins": ["FAKEUSD"]}},
        {"network": {"rpc_url": "localhost:8545"}},
        {"sampling": {"random_start": 10, "random_end": 5}},
    ],
)
def test_invalid_values_raise_configuration_error(data):
    with pytest.raises(ConfigurationError) as exc_info:
        ScannerConfig.from_dict(data)
    assert exc_info.value.details["errors"]


def test_set_nested_value_creates_levels():
    data = {}
    set_nested_value(data, "a.b.c", 1)
    assert data == {"a": {"b": {"c": 1}}}


def test_apply_env_overrides_ignores_unknown_and_empty():
    data = apply_env_overrides({}, {"SCANNER_RPC_URL": "", "OTHER": "x"})
    assert data == {}
    data = apply_env_overrides({}, {"SCANNER_REDIS_URL": "redis://cache:6379/1"})
    assert data == {"dispatch": {"redis_url": "redis://cache:6379/1"}}
