"""Strict Retest Detector for Pattern Replay

This module implements the StrictRetestDetector class: pivot-based retest
detection whose breakout, retest, confirmation and invalidation thresholds
are expressed as multiples of ATR so that it adapts to each asset's
volatility.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .config import StrictRetestOptions
from .indicators import atr_series, find_pivots, last_pivot_at_or_before, sma_series
from .models import (
    Candle,
    Pattern,
    PatternMetadata,
    PatternType,
    Pivot,
    RetestMode,
    RetestSignal,
    TradeSide,
)

logger = logging.getLogger(__name__)


@dataclass
class _RetestSearch:
    """單次回測搜尋的結果"""
    kind: str
    retest_index: Optional[int] = None
    confirm_index: Optional[int] = None
    reject_index: Optional[int] = None


def _is_long_wick_touch(c: Candle, level: float, tol: float) -> bool:
    return c.low <= level + tol and c.close >= level - tol


def _is_short_wick_touch(c: Candle, level: float, tol: float) -> bool:
    return c.high >= level - tol and c.close <= level + tol


def _is_close_touch(c: Candle, level: float, tol: float) -> bool:
    return level - tol <= c.close <= level + tol


class StrictRetestDetector:
    """嚴格回測型態檢測器

    以樞紐高低點作為關鍵價位，對每根K線檢查四種情境：
    - 多方延續：上升趨勢中收盤突破最近樞紐高點
    - 空方延續：下降趨勢中收盤跌破最近樞紐低點
    - 多方反轉：下降趨勢中收盤突破最近樞紐高點
    - 空方反轉：上升趨勢中收盤跌破最近樞紐低點

    突破後等待 min_bars_after_breakout 根K線再開始搜尋回測，
    最多等待 max_bars_to_wait_retest 根。回測必須先觸碰價位，
    再出現收盤超越確認緩衝且強於前一根收盤的確認K線；
    收盤反向超過失效緩衝即判定失效。

    Attributes:
        options: 檢測參數
    """

    def __init__(self, options: Optional[StrictRetestOptions] = None):
        self.options = options or StrictRetestOptions()

    def _search_long(
        self,
        candles: Sequence[Candle],
        level: float,
        tol: float,
        confirm_buf: float,
        invalid_buf: float,
        start: int,
        end: int
    ) -> _RetestSearch:
        mode = self.options.retest_mode
        wick_idx: Optional[int] = None
        close_idx: Optional[int] = None

        for i in range(start, end + 1):
            c = candles[i]

            if c.close < level - invalid_buf:
                return _RetestSearch("REJECT_LONG_INVALIDATION", reject_index=i)

            if wick_idx is None and _is_long_wick_touch(c, level, tol):
                wick_idx = i
            if close_idx is None and _is_close_touch(c, level, tol):
                close_idx = i

            prev = candles[i - 1] if i > 0 else c
            if c.close > level + confirm_buf and c.close > prev.close:
                found = self._pick_touch("LONG", mode, wick_idx, close_idx, i)
                if found is not None:
                    return found

        return _RetestSearch("REJECT_LONG_TIMEOUT", reject_index=end)

    def _search_short(
        self,
        candles: Sequence[Candle],
        level: float,
        tol: float,
        confirm_buf: float,
        invalid_buf: float,
        start: int,
        end: int
    ) -> _RetestSearch:
        mode = self.options.retest_mode
        wick_idx: Optional[int] = None
        close_idx: Optional[int] = None

        for i in range(start, end + 1):
            c = candles[i]

            if c.close > level + invalid_buf:
                return _RetestSearch("REJECT_SHORT_INVALIDATION", reject_index=i)

            if wick_idx is None and _is_short_wick_touch(c, level, tol):
                wick_idx = i
            if close_idx is None and _is_close_touch(c, level, tol):
                close_idx = i

            prev = candles[i - 1] if i > 0 else c
            if c.close < level - confirm_buf and c.close < prev.close:
                found = self._pick_touch("SHORT", mode, wick_idx, close_idx, i)
                if found is not None:
                    return found

        return _RetestSearch("REJECT_SHORT_TIMEOUT", reject_index=end)

    @staticmethod
    def _pick_touch(
        side: str,
        mode: RetestMode,
        wick_idx: Optional[int],
        close_idx: Optional[int],
        confirm_idx: int
    ) -> Optional[_RetestSearch]:
        """依判定模式選擇確認前已發生的觸碰"""
        had_wick = wick_idx is not None and wick_idx < confirm_idx
        had_close = close_idx is not None and close_idx < confirm_idx

        if mode in (RetestMode.CLOSE, RetestMode.BOTH) and had_close:
            return _RetestSearch(f"RETEST_{side}_CLOSE", retest_index=close_idx, confirm_index=confirm_idx)
        if mode in (RetestMode.WICK, RetestMode.BOTH) and had_wick:
            return _RetestSearch(f"RETEST_{side}_WICK", retest_index=wick_idx, confirm_index=confirm_idx)
        return None

    def _build_signal(
        self,
        candles: Sequence[Candle],
        side: TradeSide,
        pivot: Pivot,
        breakout_index: int,
        search: _RetestSearch,
        is_reversal: bool
    ) -> RetestSignal:
        final_index = search.confirm_index
        if final_index is None:
            final_index = search.reject_index if search.reject_index is not None else breakout_index

        return RetestSignal(
            kind=search.kind,
            side=side,
            level=pivot.price,
            pivot_index=pivot.index,
            breakout_index=breakout_index,
            time=candles[final_index].time,
            is_reversal=is_reversal,
            pivot_type="high" if side == TradeSide.LONG else "low",
            retest_index=search.retest_index,
            confirm_index=search.confirm_index,
            reject_index=search.reject_index,
        )

    def detect_signals(self, candles: Sequence[Candle]) -> List[RetestSignal]:
        """掃描整個序列，返回所有回測訊號（包含被拒絕者）

        Args:
            candles: K 線序列

        Returns:
            按突破索引排序的訊號列表；K線數不足時返回空列表
        """
        opts = self.options
        if len(candles) < opts.min_candles:
            logger.warning(
                f"Not enough candles for strict retest detection "
                f"({len(candles)} < {opts.min_candles})"
            )
            return []

        pivot_highs, pivot_lows = find_pivots(candles, opts.pivot_left, opts.pivot_right)
        atr = atr_series(candles, opts.atr_period)
        ma = sma_series(candles, opts.ma_period) if opts.use_trend_filter else None

        logger.debug(f"Found {len(pivot_highs)} pivot highs, {len(pivot_lows)} pivot lows")

        signals: List[RetestSignal] = []
        last = len(candles) - 1

        for i, candle in enumerate(candles):
            a = atr[i]
            if a is None:
                continue

            if ma is None:
                trend_up = trend_down = True
            else:
                trend_up = ma[i] is not None and candle.close > ma[i]
                trend_down = ma[i] is not None and candle.close < ma[i]

            breakout_buf = a * opts.breakout_atr_mult
            tol = a * opts.retest_atr_mult
            confirm_buf = a * opts.confirm_atr_mult
            invalid_buf = a * opts.invalid_atr_mult

            start = i + opts.min_bars_after_breakout
            end = min(last, i + opts.max_bars_to_wait_retest)

            ph = last_pivot_at_or_before(pivot_highs, i)
            pl = last_pivot_at_or_before(pivot_lows, i)
            long_break = ph is not None and candle.close > ph.price + breakout_buf
            short_break = pl is not None and candle.close < pl.price - breakout_buf

            # Both continuations first, then both reversals
            scenarios = (
                (TradeSide.LONG, False, long_break and trend_up),
                (TradeSide.SHORT, False, short_break and trend_down),
                (TradeSide.LONG, True, long_break and trend_down),
                (TradeSide.SHORT, True, short_break and trend_up),
            )
            for side, is_reversal, allowed in scenarios:
                if not allowed:
                    continue
                if side == TradeSide.LONG:
                    pivot = ph
                    search = self._search_long(
                        candles, ph.price, tol, confirm_buf, invalid_buf, start, end
                    )
                else:
                    pivot = pl
                    search = self._search_short(
                        candles, pl.price, tol, confirm_buf, invalid_buf, start, end
                    )
                signals.append(self._build_signal(candles, side, pivot, i, search, is_reversal))

        logger.info(f"Detected {len(signals)} retest signals (including rejections)")
        return signals

    @staticmethod
    def signal_quality(signal: RetestSignal) -> int:
        """計算訊號的品質分數

        基礎 85 分；收盤觸碰 +5，順勢延續 +4。
        """
        quality = 85
        if signal.kind.endswith("_CLOSE"):
            quality += 5
        if not signal.is_reversal:
            quality += 4
        return quality

    def to_pattern(self, signal: RetestSignal) -> Optional[Pattern]:
        """將成功的回測訊號轉換為 Pattern，拒絕訊號返回 None"""
        if not signal.is_successful:
            return None
        if signal.retest_index is None or signal.confirm_index is None:
            return None

        is_long = signal.side == TradeSide.LONG
        level = signal.level

        expected_entry = level * 1.003 if is_long else level * 0.997
        expected_exit = level * 1.04 if is_long else level * 0.96
        stop_loss = level * 0.985 if is_long else level * 1.015

        setup = "Reversal" if signal.is_reversal else "Continuation"
        touch = "wick touch" if signal.kind.endswith("_WICK") else "close touch"
        side_text = signal.side.value.upper()
        pivot_text = "pivot high (resistance)" if signal.pivot_type == "high" else "pivot low (support)"
        direction = "above" if is_long else "below"

        hint = (
            f"{setup} {side_text}: price broke the {pivot_text} at {level:.2f}, "
            f"came back to test it from {direction}, and confirmed. "
            f"Entry {expected_entry:.2f} | SL {stop_loss:.2f}"
        )

        return Pattern(
            type=PatternType.RETEST,
            start_index=signal.retest_index,
            end_index=signal.confirm_index,
            expected_entry=expected_entry,
            expected_exit=expected_exit,
            stop_loss=stop_loss,
            metadata=PatternMetadata(
                quality=self.signal_quality(signal),
                description=f"{setup} | {side_text} retest | {touch}",
                hint=hint,
                side=signal.side,
                breakout_index=signal.breakout_index,
            ),
        )

    def detect_patterns(self, candles: Sequence[Candle]) -> List[Pattern]:
        """返回所有成功回測對應的 Pattern，依訊號順序排列"""
        patterns = []
        for signal in self.detect_signals(candles):
            pattern = self.to_pattern(signal)
            if pattern is not None:
                patterns.append(pattern)
        return patterns
