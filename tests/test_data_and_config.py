"""
Tests for bar loading, indicator math, configuration and credentials.
"""

from pathlib import Path

import pandas as pd
import pytest

from core.config import AppConfig, ConfigError, config_from_dict, load_config
from core.environment import Environment, load_environment
from core.types import ModuleResult, Signal, Symbol, Timeframe
from data.candles import Indicators, bars_from_ohlcv, load_bars_csv


HEADER = "timestamp,open,high,low,close,volume\n"


class TestLoadBarsCsv:

    def test_loads_rows_in_order(self, tmp_path):
        path = tmp_path / "bars.csv"
        path.write_text(HEADER + "1000,1,2,0.5,1.5,10\n2000,1.5,2.5,1,2,20\n")
        bars = load_bars_csv(path)
        assert [b.open_time for b in bars] == [1000, 2000]
        assert bars[1].close == 2.0
        assert bars[1].volume == 20.0

    def test_malformed_rows_are_skipped(self, tmp_path):
        path = tmp_path / "bars.csv"
        path.write_text(HEADER + "1000,1,2,0.5,1.5,10\nbad,row,x,y,z,w\n3000,1,1,1,nan,1\n4000,1,2,0.5,1.7,10\n")
        bars = load_bars_csv(path)
        assert [b.open_time for b in bars] == [1000, 4000]

    def test_header_only(self, tmp_path):
        path = tmp_path / "bars.csv"
        path.write_text(HEADER)
        assert load_bars_csv(path) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_bars_csv(tmp_path / "nope.csv")

    def test_bars_from_ohlcv_drops_bad_rows(self):
        bars = bars_from_ohlcv([[1, 1, 1, 1, 1, 1], [2, None, 1, 1, 1, 1], [3, 2, 2, 2, 2]])
        assert [b.open_time for b in bars] == [1]


class TestIndicators:

    def test_ema_seeded_with_first_value(self):
        ema = Indicators.ema(pd.Series([10.0, 20.0]), 3)
        assert ema.iloc[0] == 10.0
        assert ema.iloc[1] == pytest.approx(15.0)

    def test_rsi_without_enough_data(self):
        assert Indicators.rsi_last(pd.Series([1.0, 2.0]), 14) == 50.0

    def test_rsi_mixed(self):
        # Deltas +2, -1: gains 2, losses 1 -> RS 2 -> RSI 66.67
        assert Indicators.rsi_last(pd.Series([10.0, 12.0, 11.0]), 2) == pytest.approx(200.0 / 3.0)

    def test_bollinger_population_std(self):
        middle, upper, lower = Indicators.bollinger_last(pd.Series([1.0, 3.0]), 2, 2.0)
        assert middle == 2.0
        assert upper == pytest.approx(4.0)
        assert lower == pytest.approx(0.0)


class TestTypes:

    def test_module_result_score_is_clamped(self):
        assert ModuleResult(score=250.0).score == 100.0
        assert ModuleResult(score=-3.0).score == 0.0

    def test_symbol_parse(self):
        assert Symbol.parse("eth/usdt") == Symbol("ETH", "USDT")
        assert Symbol.parse("BTCUSDT").pair == "BTC/USDT"
        assert str(Symbol()) == "BTCUSDT"

    def test_timeframe(self):
        assert Timeframe.parse("5m") is Timeframe.M5
        assert Timeframe.parse("h1") is Timeframe.H1
        assert Timeframe.M5.milliseconds == 300_000
        with pytest.raises(ValueError):
            Timeframe.parse("7m")

    def test_signal_labels(self):
        assert str(Signal.LONG) == "LONG"
        assert str(Signal.NEUTRAL) == "WAIT"


class TestConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "absent.yaml"))
        assert cfg == AppConfig()
        assert cfg.weights == {"SMA_EMA": 0.4, "RSI": 0.3, "BOLL": 0.2, "MTF_SMA": 0.1}

    def test_partial_override(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("modules:\n  mtf_factor: 6\n  unknown_key: 1\nrisk:\n  max_daily_loss_pct: 3.5\n")
        cfg = load_config(str(path))
        assert cfg.modules.mtf_factor == 6
        assert cfg.modules.ema_short == 20
        assert cfg.risk.max_daily_loss_pct == 3.5

    def test_bundled_config_loads(self):
        cfg = load_config(str(Path(__file__).parent.parent / "core" / "config.yaml"))
        assert cfg.live.symbol == "BTC/USDT"
        assert cfg.decision.thr_long == 70.0

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("modules: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    @pytest.mark.parametrize("raw", [
        {"modules": [1, 2]},
        {"weights": [0.5]},
        {"weights": {"RSI": "heavy"}},
        ["not", "a", "mapping"],
        {"backtest": {"grid_top_n": 0}},
        {"backtest": {"grid_top_n": "ten"}},
    ])
    def test_malformed_sections(self, raw):
        with pytest.raises(ConfigError):
            config_from_dict(raw)


class TestEnvironment:

    def test_loads_prefixed_credentials(self, tmp_path, monkeypatch):
        # setenv first so the values written by the .env file are undone afterwards
        monkeypatch.setenv("TESTNET_API_KEY", "")
        monkeypatch.setenv("TESTNET_API_SECRET", "")
        env_file = tmp_path / ".env"
        env_file.write_text("TESTNET_API_KEY=abc\nTESTNET_API_SECRET=def\n")

        env = load_environment(Environment.TESTNET, str(env_file))

        assert env.is_valid()
        assert env.testnet
        assert "abc" not in repr(env)

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv("LIVE_API_KEY", raising=False)
        monkeypatch.delenv("LIVE_API_SECRET", raising=False)
        env = load_environment(Environment.LIVE, None)
        assert not env.is_valid()
        assert not env.testnet
