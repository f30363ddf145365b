"""Tests for the CSV and synthetic candle sources"""

import pytest
from hypothesis import given, strategies as st, settings, HealthCheck

from pattern_replay.data import CsvCandleSource, SyntheticCandleSource, parse_timestamp
from pattern_replay.game.exceptions import InvalidParameterError


class TestParseTimestamp:
    """Test timestamp normalisation"""

    def test_unix_seconds(self):
        """Test 10-digit numbers are unix seconds"""
        assert parse_timestamp("1700000000") == 1700000000

    def test_unix_milliseconds(self):
        """Test 13-digit numbers are unix milliseconds"""
        assert parse_timestamp("1700000000000") == 1700000000
        assert parse_timestamp(1700000000123) == 1700000000

    def test_iso_dates(self):
        """Test ISO strings parse as UTC"""
        assert parse_timestamp("2023-11-14T22:13:20Z") == 1700000000
        assert parse_timestamp("2024-01-01") == 1704067200

    @pytest.mark.parametrize("value", [None, "", "nan", "not a date"])
    def test_unparseable(self, value):
        """Test unparseable values return None"""
        assert parse_timestamp(value) is None


class TestCsvCandleSource:
    """Test CSV loading and cleaning"""

    def test_tradingview_export(self):
        """Test a time/open/high/low/close/Volume export"""
        content = (
            "time,open,high,low,close,Volume\n"
            "1700000000,100,101,99,100.5,12\n"
            "1700003600,100.5,102,100,101.5,15\n"
        )
        candles = CsvCandleSource.from_text(content).load()
        assert len(candles) == 2
        assert candles[0].time == 1700000000
        assert candles[1].close == 101.5
        assert candles[1].volume == 15.0

    def test_binance_milliseconds(self):
        """Test open_time in milliseconds"""
        content = (
            "open_time,open,high,low,close,volume\n"
            "1700000000000,100,101,99,100.5,12\n"
        )
        candles = CsvCandleSource.from_text(content).load()
        assert candles[0].time == 1700000000

    def test_first_column_time_fallback(self):
        """Test the first column is used when no time header exists"""
        content = (
            "ts,Open,High,Low,Close\n"
            "2023-11-14T22:13:20Z,100,101,99,100.5\n"
        )
        candles = CsvCandleSource.from_text(content).load()
        assert candles[0].time == 1700000000
        assert candles[0].volume == 0.0

    def test_invalid_rows_skipped(self):
        """Test rows with bad numbers, bad times or inconsistent OHLC are skipped"""
        content = (
            "time,open,high,low,close,volume\n"
            "1700000000,100,101,99,100.5,12\n"
            "1700003600,abc,101,99,100.5,12\n"
            "garbage,100,101,99,100.5,12\n"
            "1700007200,100,98,99,100.5,12\n"
            "1700010800,-1,101,-2,100.5,12\n"
            "1700014400,100,100.2,99,100.5,12\n"
            "1700018000,100,101,99,100.5,12\n"
        )
        candles = CsvCandleSource.from_text(content).load()
        assert [c.time for c in candles] == [1700000000, 1700018000]

    def test_sorted_and_deduplicated(self):
        """Test output is sorted by time and keeps the first duplicate"""
        content = (
            "time,open,high,low,close,volume\n"
            "1700007200,102,103,101,102.5,1\n"
            "1700000000,100,101,99,100.5,1\n"
            "1700000000,100,105,95,104,1\n"
            "1700003600,101,102,100,101.5,1\n"
        )
        candles = CsvCandleSource.from_text(content).load()
        assert [c.time for c in candles] == [1700000000, 1700003600, 1700007200]
        assert candles[0].close == 100.5

    def test_missing_columns(self):
        """Test a missing price column raises InvalidParameterError"""
        content = "time,open,high,low\n1700000000,100,101,99\n"
        with pytest.raises(InvalidParameterError) as info:
            CsvCandleSource.from_text(content).load()
        assert "close" in str(info.value)

    def test_empty_file(self):
        """Test an empty file raises InvalidParameterError"""
        with pytest.raises(InvalidParameterError):
            CsvCandleSource.from_text("").load()

    def test_load_from_path(self, tmp_path):
        """Test loading from a file path"""
        path = tmp_path / "candles.csv"
        path.write_text("timestamp,open,high,low,close,volume\n1700000000,1,2,0.5,1.5,3\n")
        candles = CsvCandleSource(str(path)).load()
        assert candles[0].high == 2.0


class TestSyntheticCandleSource:
    """Test the synthetic generator"""

    def test_same_seed_same_series(self):
        """Test generation is reproducible for a seed"""
        first = SyntheticCandleSource(count=200, seed=42).load()
        second = SyntheticCandleSource(count=200, seed=42).load()
        assert first == second
        assert first != SyntheticCandleSource(count=200, seed=43).load()

    def test_times_and_count(self):
        """Test candles are evenly spaced from start_time"""
        candles = SyntheticCandleSource(count=10, start_time=1000, interval=60, seed=1).load()
        assert len(candles) == 10
        assert [c.time for c in candles] == [1000 + i * 60 for i in range(10)]
        assert candles[0].open == 50000.0

    def test_invalid_arguments(self):
        """Test invalid generator arguments are rejected"""
        with pytest.raises(ValueError):
            SyntheticCandleSource(count=0)
        with pytest.raises(ValueError):
            SyntheticCandleSource(volatility=0)

    @given(seed=st.integers(min_value=0, max_value=2 ** 32 - 1))
    @settings(max_examples=20, suppress_health_check=[HealthCheck.too_slow])
    def test_candles_are_consistent(self, seed):
        """Property: generated candles are positive and OHLC-consistent"""
        candles = SyntheticCandleSource(count=300, seed=seed).load()
        for previous, candle in zip(candles, candles[1:]):
            assert candle.open == previous.close
        for candle in candles:
            assert candle.low > 0
            assert candle.high >= max(candle.open, candle.close)
            assert candle.low <= min(candle.open, candle.close)
            assert candle.volume > 0
