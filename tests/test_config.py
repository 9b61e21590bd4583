"""Tests for configuration loading."""

import pytest

from crossarb.config import Config, DetectorConfig, ScanConfig
from crossarb.exceptions import ConfigError

CONFIG_YAML = """
exchanges:
  binance:
    key: ${TEST_BINANCE_KEY}
    secret: ${TEST_BINANCE_SECRET}
    sandbox: false
  kucoin:
    key: k
    secret: s
    password: p
    enabled: false
detector:
  min_spread_percent: 1.2
  max_book_age_ms: 2000
execution:
  order_size_quote: 250
  paper_trading: false
scan:
  interval_ms: 1000
  trading_pairs: ["BTC/USDT", "SOL/USDC"]
"""


class TestLoadFromFile:

    def test_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_BINANCE_KEY", "abc")
        monkeypatch.setenv("TEST_BINANCE_SECRET", "xyz")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = Config.load_from_file(str(path))

        assert config.exchanges["binance"].key == "abc"
        assert config.exchanges["binance"].secret == "xyz"
        assert config.exchanges["binance"].sandbox is False
        assert list(config.enabled_exchanges()) == ["binance"]
        assert config.detector.min_spread_percent == 1.2
        assert config.detector.fee_rate == 0.001
        assert config.execution.order_size_quote == 250
        assert config.execution.paper_trading is False
        assert config.scan.trading_pairs == ["BTC/USDT", "SOL/USDC"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Config.load_from_file(str(tmp_path / "nope.yaml"))

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("detector:\n  fee_rate: 1.5\n")
        with pytest.raises(ConfigError):
            Config.load_from_file(str(path))

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert Config.load_from_file(str(path)).scan.interval_ms == 3000

    @pytest.mark.parametrize("text", [
        "detector: [min_spread_percent: 1\n",
        "scan:\n  interval_ms: 1\n bad_indent: 2\n",
        "- just\n- a list\n",
    ])
    def test_malformed_yaml(self, tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        with pytest.raises(ConfigError):
            Config.load_from_file(str(path))


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        {"fee_rate": -0.01},
        {"fee_rate": 1},
        {"max_book_age_ms": 0},
        {"book_depth": -1},
    ])
    def test_detector_rejects(self, kwargs):
        with pytest.raises(ValueError):
            DetectorConfig(**kwargs)

    def test_pairs_need_slash(self):
        with pytest.raises(ValueError):
            ScanConfig(trading_pairs=["BTCUSDT"])


class TestFromEnv:

    def test_defaults(self):
        config = Config.from_env({})
        assert config.exchanges == {}
        assert config.detector.min_spread_percent == 0.8
        assert config.execution.order_size_quote == 100
        assert config.execution.paper_trading is True
        assert config.scan.interval_ms == 3000
        assert config.scan.trading_pairs == ["BTC/USDT", "ETH/USDT"]

    def test_overrides(self):
        config = Config.from_env({
            "MIN_SPREAD_PERCENTAGE": "0.5",
            "ORDER_SIZE_USD": "50",
            "CHECK_INTERVAL_MS": "1500",
            "PAPER_TRADING": "false",
            "TRADING_PAIRS": "BTC/USDT, XRP/USDT",
            "LOG_LEVEL": "debug",
            "KUCOIN_API_KEY": "key",
            "KUCOIN_API_SECRET": "secret",
            "KUCOIN_API_PASSPHRASE": "phrase",
            "BINANCE_API_KEY": "only-key",
        })

        assert config.detector.min_spread_percent == 0.5
        assert config.execution.order_size_quote == 50
        assert config.execution.paper_trading is False
        assert config.scan.interval_ms == 1500
        assert config.scan.trading_pairs == ["BTC/USDT", "XRP/USDT"]
        assert config.logging.level == "DEBUG"
        assert list(config.exchanges) == ["kucoin"]
        assert config.exchanges["kucoin"].password == "phrase"
        assert config.exchanges["kucoin"].sandbox is False

    def test_bad_number(self):
        with pytest.raises(ConfigError):
            Config.from_env({"ORDER_SIZE_USD": "lots"})
