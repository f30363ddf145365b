"""Unit tests for the pattern detectors

Each detector is exercised on a hand-built candle series that satisfies
every stage, and on near-miss variants that must be rejected.
"""

import pytest

from pattern_replay.core.config import ConsolidationBreakoutOptions, StrictRetestOptions
from pattern_replay.core.models import Candle, PatternType, RetestMode, TradeSide
from pattern_replay.core.breakout_detector import BreakoutDetector
from pattern_replay.core.retest_detector import RetestDetector
from pattern_replay.core.flag_detector import BullFlagDetector
from pattern_replay.core.strict_retest_detector import StrictRetestDetector
from pattern_replay.core.consolidation_detector import ConsolidationBreakoutDetector


T0 = 1_700_000_000


def bar(i, close, high=None, low=None, open_=None, volume=1000.0):
    high = close if high is None else high
    low = close if low is None else low
    open_ = close if open_ is None else open_
    return Candle(T0 + i * 3600, open_, max(high, open_, close), min(low, open_, close), close, volume)


def breakout_series(breakout_close=101.505, continuation=(102.0, 102.5, 101.0, 103.0, 103.5)):
    candles = [bar(i, 100.0, high=101.0, low=99.0) for i in range(15)]
    candles.append(bar(15, breakout_close, high=breakout_close + 0.5, low=100.5, open_=100.6))
    for offset, close in enumerate(continuation):
        candles.append(bar(16 + offset, close, high=close + 0.3, low=close - 0.3))
    return candles


def retest_series():
    candles = []
    # Downtrend: highs 110 -> 103
    for k in range(8):
        high = 110.0 - k
        candles.append(bar(k, high - 1, high=high, low=high - 2, open_=high - 0.5))
    # Breakout candle
    candles.append(bar(8, 104.5, high=111.5, low=102.0, open_=102.5))
    # Continuation
    for offset, close in enumerate([108, 109, 110, 111, 112, 113]):
        candles.append(bar(9 + offset, float(close), high=close + 0.5, low=close - 0.5))
    # Retest of the broken 110 level
    for offset in range(5):
        candles.append(bar(15 + offset, 111.0, high=111.5, low=109.0))
    # Bounce
    for offset, close in enumerate([112, 113, 114, 115, 116]):
        candles.append(bar(20 + offset, float(close), high=close + 0.5, low=close - 0.5))
    return candles


def flag_series():
    candles = []
    # Pole: closes 100 -> 107, highs up to 108
    for k in range(8):
        candles.append(bar(k, 100.0 + k, high=101.0 + k, low=99.0 + k))
    # Flag
    for k in range(8, 19):
        candles.append(bar(k, 106.0, high=107.0, low=105.0))
    # Breakout
    for offset, close in enumerate([109, 110, 111, 112, 112.5]):
        candles.append(bar(19 + offset, float(close), high=close + 0.5, low=close - 0.5))
    return candles


def strict_retest_series():
    closes = [100.0] * 20 + [101, 102, 101, 100, 100, 100, 101, 102, 103, 103.5,
                             104, 104, 103.5, 103, 102.6, 103.2]
    closes += [104.0 + k for k in range(24)]
    return [bar(i, float(c), high=c + 0.5, low=c - 0.5) for i, c in enumerate(closes)]


def double_break_series():
    """Pivot high 102.5 at 21, pivot low 108.5 at 32, then bar 37 closes between them"""
    closes = [100.0] * 20 + [101, 102, 101, 101.5, 103, 105, 107, 109]
    candles = [bar(i, c, high=c + 0.5, low=c - 0.5) for i, c in enumerate(closes)]
    for i in range(28, 37):
        candles.append(bar(i, 110.0, high=110.5, low=108.5 if i == 32 else 109.5))
    candles.append(bar(37, 105.0, high=110.0, low=104.5, open_=110.0))
    candles += [bar(i, 105.0, high=105.5, low=104.5) for i in range(38, 46)]
    return candles


def mirror(candles, axis=200.0):
    return [
        Candle(c.time, axis - c.open, axis - c.low, axis - c.high, axis - c.close, c.volume)
        for c in candles
    ]


def consolidation_series(breakout_volume=2000.0, follow_close=102.2):
    candles = [bar(i, 100.0, high=100.8, low=99.2, volume=1000.0) for i in range(40)]
    candles.append(bar(40, 101.6, high=101.8, low=100.0, open_=100.0, volume=breakout_volume))
    candles.append(bar(41, follow_close, high=follow_close + 0.2, low=101.5, volume=1000.0))
    candles.append(bar(42, 102.5, high=102.7, low=102.0, volume=1000.0))
    candles.append(bar(43, 102.6, high=102.8, low=102.2, volume=1000.0))
    candles.append(bar(44, 102.7, high=102.9, low=102.3, volume=1000.0))
    return candles


class TestBreakoutDetector:
    """Test the breakout detector stages"""

    def test_detects_breakout(self):
        """Test a tight range, breakout and continuation is recognised"""
        pattern = BreakoutDetector().detect(breakout_series(), 0)
        assert pattern is not None
        assert pattern.type == PatternType.BREAKOUT
        assert pattern.start_index == 0
        assert pattern.end_index == 20
        assert pattern.expected_entry == pytest.approx(101.505 * 1.002)
        assert pattern.expected_exit == pytest.approx(101.505 * 1.02)
        assert pattern.stop_loss == pytest.approx(99.0 * 0.995)
        assert pattern.metadata.breakout_index == 15
        assert pattern.metadata.side == TradeSide.LONG

    def test_quality_from_range(self):
        """Test quality = min(95, 70 + range% x 5)"""
        pattern = BreakoutDetector().detect(breakout_series(), 0)
        range_pct = (101.0 - 99.0) / 99.0 * 100
        assert pattern.quality == round(70 + range_pct * 5)

    def test_rejects_small_breakout(self):
        """Test a breakout under 0.3% above the range high fails"""
        assert BreakoutDetector().detect(breakout_series(breakout_close=101.2), 0) is None

    def test_rejects_weak_continuation(self):
        """Test fewer than 3 of 5 continuation closes above the breakout fails"""
        weak = (101.0, 101.2, 102.0, 101.1, 101.3)
        assert BreakoutDetector().detect(breakout_series(continuation=weak), 0) is None

    def test_rejects_wide_range(self):
        """Test a consolidation wider than 3% fails"""
        candles = breakout_series()
        candles[3] = bar(3, 100.0, high=104.0, low=99.0)
        assert BreakoutDetector().detect(candles, 0) is None

    def test_not_enough_candles(self):
        """Test the detector returns None when the window runs past the end"""
        assert BreakoutDetector().detect(breakout_series()[:20], 0) is None

    def test_invalid_parameters(self):
        """Test constructor validation"""
        with pytest.raises(ValueError):
            BreakoutDetector(continuation_size=3, min_continuation=4)


class TestRetestDetector:
    """Test the fixed-percentage retest detector"""

    def test_detects_retest(self):
        """Test the five-stage retest is recognised"""
        pattern = RetestDetector().detect(retest_series(), 0)
        assert pattern is not None
        assert pattern.type == PatternType.RETEST
        assert pattern.start_index == 0
        assert pattern.end_index == 24
        assert pattern.expected_entry == pytest.approx(109.0 * 1.003)
        assert pattern.expected_exit == pytest.approx(109.0 * 1.04)
        assert pattern.stop_loss == pytest.approx(109.0 * 0.985)
        assert pattern.quality == 92

    def test_rejects_uptrend(self):
        """Test a rising trend window fails the first stage"""
        candles = retest_series()
        candles[4] = bar(4, 112.0, high=113.0, low=111.0)
        assert RetestDetector().detect(candles, 0) is None

    def test_rejects_missing_retest(self):
        """Test price that never returns near the broken level fails"""
        candles = retest_series()
        for k in range(15, 20):
            candles[k] = bar(k, 120.0, high=120.5, low=119.0)
        assert RetestDetector().detect(candles, 0) is None

    def test_rejects_failed_bounce(self):
        """Test a bounce with too few strong closes fails"""
        candles = retest_series()
        for k in range(20, 23):
            candles[k] = bar(k, 109.2, high=109.5, low=109.0)
        assert RetestDetector().detect(candles, 0) is None

    def test_is_downtrend(self):
        """Test the rolling-high downtrend check"""
        detector = RetestDetector()
        assert detector.is_downtrend(retest_series()[:8]) is True


class TestBullFlagDetector:
    """Test the bull flag detector"""

    def test_detects_flag(self):
        """Test pole, flag and breakout are recognised"""
        pattern = BullFlagDetector().detect(flag_series(), 0)
        assert pattern is not None
        assert pattern.type == PatternType.FLAG
        assert pattern.start_index == 0
        assert pattern.end_index == 23
        assert pattern.expected_entry == pytest.approx(108.0 * 1.002)
        assert pattern.expected_exit == pytest.approx(108.0 * 1.03)
        assert pattern.stop_loss == pytest.approx(105.0 * 0.995)
        assert pattern.quality == 81

    def test_rejects_weak_pole(self):
        """Test a pole under 3% fails"""
        candles = [bar(k, 100.0, high=100.5, low=99.5) for k in range(8)] + flag_series()[8:]
        assert BullFlagDetector().detect(candles, 0) is None

    def test_rejects_wide_flag(self):
        """Test a flag wider than 4% fails"""
        candles = flag_series()
        candles[12] = bar(12, 106.0, high=107.0, low=100.0)
        assert BullFlagDetector().detect(candles, 0) is None

    def test_rejects_missing_breakout(self):
        """Test fewer than 3 breakout closes above the flag high fails"""
        candles = flag_series()
        for k in range(19, 22):
            candles[k] = bar(k, 106.0, high=107.0, low=105.0)
        assert BullFlagDetector().detect(candles, 0) is None


class TestStrictRetestDetector:
    """Test the pivot/ATR retest detector"""

    def options(self, **overrides):
        values = dict(use_trend_filter=False, min_candles=30)
        values.update(overrides)
        return StrictRetestOptions(**values)

    def test_long_continuation_retest(self):
        """Test a broken pivot high retested by close and confirmed"""
        detector = StrictRetestDetector(self.options())
        signals = detector.detect_signals(strict_retest_series())
        first = signals[0]
        assert first.kind == "RETEST_LONG_CLOSE"
        assert first.side == TradeSide.LONG
        assert first.level == pytest.approx(102.5)
        assert first.pivot_index == 21
        assert first.breakout_index == 28
        assert first.retest_index == 34
        assert first.confirm_index == 35
        assert first.is_reversal is False

    def test_without_trend_filter_emits_reversal_too(self):
        """Test both setups are evaluated when the trend filter is off"""
        signals = StrictRetestDetector(self.options()).detect_signals(strict_retest_series())
        assert signals[1].breakout_index == 28
        assert signals[1].is_reversal is True

    def test_scenario_order_on_double_break(self):
        """Test continuations precede reversals when one bar breaks both pivots"""
        signals = StrictRetestDetector(self.options()).detect_signals(double_break_series())
        at_bar = [(s.side, s.is_reversal, s.pivot_type) for s in signals if s.breakout_index == 37]
        assert at_bar == [
            (TradeSide.LONG, False, "high"),
            (TradeSide.SHORT, False, "low"),
            (TradeSide.LONG, True, "high"),
            (TradeSide.SHORT, True, "low"),
        ]

    def test_wick_mode(self):
        """Test WICK mode reports the first wick touch"""
        detector = StrictRetestDetector(self.options(retest_mode=RetestMode.WICK))
        first = detector.detect_signals(strict_retest_series())[0]
        assert first.kind == "RETEST_LONG_WICK"
        assert first.retest_index == 33

    def test_short_mirror(self):
        """Test the mirrored series produces the short retest"""
        detector = StrictRetestDetector(self.options())
        first = detector.detect_signals(mirror(strict_retest_series()))[0]
        assert first.kind == "RETEST_SHORT_CLOSE"
        assert first.side == TradeSide.SHORT
        assert first.level == pytest.approx(97.5)
        assert first.retest_index == 34
        assert first.confirm_index == 35

    def test_invalidation(self):
        """Test a close through the invalidation buffer rejects the setup"""
        candles = strict_retest_series()
        candles[33] = bar(33, 101.0, high=101.5, low=100.5)
        first = StrictRetestDetector(self.options()).detect_signals(candles)[0]
        assert first.kind == "REJECT_LONG_INVALIDATION"
        assert first.reject_index == 33
        assert not first.is_successful

    def test_to_pattern(self):
        """Test conversion of a successful signal to a retest pattern"""
        detector = StrictRetestDetector(self.options())
        pattern = detector.detect_patterns(strict_retest_series())[0]
        assert pattern.type == PatternType.RETEST
        assert pattern.start_index == 34
        assert pattern.end_index == 35
        assert pattern.expected_entry == pytest.approx(102.5 * 1.003)
        assert pattern.expected_exit == pytest.approx(102.5 * 1.04)
        assert pattern.stop_loss == pytest.approx(102.5 * 0.985)
        assert pattern.quality == 94
        assert pattern.metadata.breakout_index == 28

    def test_short_pattern_levels(self):
        """Test short patterns mirror the entry, exit and stop multipliers"""
        pattern = StrictRetestDetector(self.options()).detect_patterns(mirror(strict_retest_series()))[0]
        assert pattern.metadata.side == TradeSide.SHORT
        assert pattern.expected_entry == pytest.approx(97.5 * 0.997)
        assert pattern.expected_exit == pytest.approx(97.5 * 0.96)
        assert pattern.stop_loss == pytest.approx(97.5 * 1.015)

    def test_rejected_signal_has_no_pattern(self):
        """Test rejected signals do not convert"""
        candles = strict_retest_series()
        candles[33] = bar(33, 101.0, high=101.5, low=100.5)
        detector = StrictRetestDetector(self.options())
        assert detector.to_pattern(detector.detect_signals(candles)[0]) is None

    def test_insufficient_candles(self):
        """Test short series produce no signals"""
        detector = StrictRetestDetector(self.options(min_candles=100))
        assert detector.detect_signals(strict_retest_series()) == []

    def test_options_validation(self):
        """Test option validation and string retest modes"""
        assert StrictRetestOptions(retest_mode="wick").retest_mode == RetestMode.WICK
        with pytest.raises(ValueError):
            StrictRetestOptions(min_bars_after_breakout=10, max_bars_to_wait_retest=5)


class TestConsolidationBreakoutDetector:
    """Test the consolidation breakout detector"""

    def test_detects_long_breakout(self):
        """Test a volume-backed breakout from a tight range"""
        pattern = ConsolidationBreakoutDetector().detect(consolidation_series(), 39)
        assert pattern is not None
        assert pattern.type == PatternType.BREAKOUT
        assert pattern.metadata.side == TradeSide.LONG
        assert pattern.start_index == 25
        assert pattern.end_index == 39
        assert pattern.metadata.breakout_index == 40
        assert pattern.stop_loss < 99.2
        assert pattern.expected_exit == pytest.approx(101.6 + 2 * 1.6)
        assert 0 <= pattern.quality <= 95

    def test_detects_short_breakout(self):
        """Test the mirrored series breaks down"""
        pattern = ConsolidationBreakoutDetector().detect(mirror(consolidation_series()), 39)
        assert pattern is not None
        assert pattern.metadata.side == TradeSide.SHORT
        assert pattern.stop_loss > 200 - 99.2

    def test_requires_volume_spike(self):
        """Test a breakout on average volume is rejected"""
        assert ConsolidationBreakoutDetector().detect(consolidation_series(breakout_volume=1000.0), 39) is None

    def test_requires_follow_through(self):
        """Test a breakout that falls back into the range is rejected"""
        candles = consolidation_series(follow_close=100.5)
        candles[42] = bar(42, 100.4, high=100.6, low=100.2)
        candles[43] = bar(43, 100.3, high=100.5, low=100.1)
        assert ConsolidationBreakoutDetector().detect(candles, 39) is None

    def test_origin_too_early(self):
        """Test origins without enough history are skipped"""
        assert ConsolidationBreakoutDetector().detect(consolidation_series(), 20) is None

    def test_options_validation(self):
        """Test option validation"""
        with pytest.raises(ValueError):
            ConsolidationBreakoutOptions(window=1)
