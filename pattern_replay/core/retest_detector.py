"""Retest Detector for Pattern Replay

This module implements the RetestDetector class, the simple fixed-percentage
variant: a downtrend, a breakout above the trend high, continuation, a pull
back to the broken level, and a bounce. Only long setups are recognised.
"""

from typing import List, Optional, Sequence

from .models import Candle, Pattern, PatternMetadata, PatternType, TradeSide


class RetestDetector:
    """簡易回測型態檢測器

    五階段檢測，任一階段不符即返回 None：
    1. 下跌趨勢：8 根K線內，每個 3 根滾動高點不得比前一個高出 0.5% 以上
    2. 突破K線：收盤價較趨勢末端收盤上漲 1.5%-3.5%，且最高價超過趨勢高點 1% 以上
    3. 延續：接下來 6 根中至少 4 根收盤高於突破收盤 × 0.995
    4. 回測：接下來 5 根的最低價須落在趨勢高點 3% 以內
    5. 反彈：接下來 5 根中至少 4 根收盤高於回測低點 × 1.005

    Attributes:
        trend_size: 趨勢視窗K線數 (預設 8)
        rolling_size: 滾動高點視窗 (預設 3)
        max_rolling_rise_pct: 滾動高點最大上升百分比 (預設 0.5)
        min_breakout_pct: 突破最小漲幅百分比 (預設 1.5)
        max_breakout_pct: 突破最大漲幅百分比 (預設 3.5)
        min_high_clearance_pct: 突破K線最高價超越趨勢高點的最小百分比 (預設 1.0)
        continuation_size: 延續觀察K線數 (預設 6)
        min_continuation: 最少延續K線數 (預設 4)
        retest_size: 回測觀察K線數 (預設 5)
        retest_tolerance_pct: 回測低點與突破價位的容差百分比 (預設 3.0)
        bounce_size: 反彈觀察K線數 (預設 5)
        min_bounce: 最少反彈K線數 (預設 4)
    """

    def __init__(
        self,
        trend_size: int = 8,
        rolling_size: int = 3,
        max_rolling_rise_pct: float = 0.5,
        min_breakout_pct: float = 1.5,
        max_breakout_pct: float = 3.5,
        min_high_clearance_pct: float = 1.0,
        continuation_size: int = 6,
        min_continuation: int = 4,
        retest_size: int = 5,
        retest_tolerance_pct: float = 3.0,
        bounce_size: int = 5,
        min_bounce: int = 4
    ):
        if rolling_size < 1 or rolling_size > trend_size:
            raise ValueError("rolling_size must be between 1 and trend_size")
        if min_breakout_pct > max_breakout_pct:
            raise ValueError("min_breakout_pct cannot exceed max_breakout_pct")

        self.trend_size = trend_size
        self.rolling_size = rolling_size
        self.max_rolling_rise_pct = max_rolling_rise_pct
        self.min_breakout_pct = min_breakout_pct
        self.max_breakout_pct = max_breakout_pct
        self.min_high_clearance_pct = min_high_clearance_pct
        self.continuation_size = continuation_size
        self.min_continuation = min_continuation
        self.retest_size = retest_size
        self.retest_tolerance_pct = retest_tolerance_pct
        self.bounce_size = bounce_size
        self.min_bounce = min_bounce

    @property
    def span(self) -> int:
        """完整型態所需的K線數"""
        return (
            self.trend_size + 1 + self.continuation_size
            + self.retest_size + self.bounce_size
        )

    def rolling_highs(self, window: Sequence[Candle]) -> List[float]:
        """計算視窗內每個連續子視窗的最高價"""
        return [
            max(c.high for c in window[k:k + self.rolling_size])
            for k in range(len(window) - self.rolling_size + 1)
        ]

    def is_downtrend(self, window: Sequence[Candle]) -> bool:
        """檢查滾動高點是否從未比前一個高出容許幅度以上"""
        highs = self.rolling_highs(window)
        limit = 1 + self.max_rolling_rise_pct / 100
        for prev, cur in zip(highs, highs[1:]):
            if cur > prev * limit:
                return False
        return True

    def detect(self, candles: Sequence[Candle], origin: int) -> Optional[Pattern]:
        """從 origin 開始檢測回測型態

        Args:
            candles: K 線序列
            origin: 趨勢視窗起點索引

        Returns:
            識別到的型態，若不符合條件則返回 None
        """
        end_idx = origin + self.span - 1
        if origin < 0 or end_idx >= len(candles):
            return None

        # Stage 1: downtrend
        trend = candles[origin:origin + self.trend_size]
        if not self.is_downtrend(trend):
            return None
        trend_high = max(c.high for c in trend)
        trend_last_close = trend[-1].close

        # Stage 2: breakout candle
        breakout_idx = origin + self.trend_size
        breakout = candles[breakout_idx]
        breakout_pct = (breakout.close - trend_last_close) / trend_last_close * 100
        if breakout_pct < self.min_breakout_pct or breakout_pct > self.max_breakout_pct:
            return None
        if breakout.high < trend_high * (1 + self.min_high_clearance_pct / 100):
            return None

        # Stage 3: continuation
        cursor = breakout_idx + 1
        continuation = candles[cursor:cursor + self.continuation_size]
        continuation_up = sum(1 for c in continuation if c.close > breakout.close * 0.995)
        if continuation_up < self.min_continuation:
            return None

        # Stage 4: retest of the broken level
        cursor += self.continuation_size
        retest = candles[cursor:cursor + self.retest_size]
        retest_low = min(c.low for c in retest)
        distance_pct = abs(retest_low - trend_high) / trend_high * 100
        if distance_pct > self.retest_tolerance_pct:
            return None

        # Stage 5: bounce
        cursor += self.retest_size
        bounce = candles[cursor:cursor + self.bounce_size]
        bounce_up = sum(1 for c in bounce if c.close > retest_low * 1.005)
        if bounce_up < self.min_bounce:
            return None

        quality = int(min(95, 70 + (continuation_up + bounce_up) * 2))

        return Pattern(
            type=PatternType.RETEST,
            start_index=origin,
            end_index=end_idx,
            expected_entry=retest_low * 1.003,
            expected_exit=retest_low * 1.04,
            stop_loss=retest_low * 0.985,
            metadata=PatternMetadata(
                quality=quality,
                description=f"Retest of the broken {trend_high:.2f} level after a {breakout_pct:.1f}% breakout",
                hint="Look for support holding at the broken level before entering",
                side=TradeSide.LONG,
                breakout_index=breakout_idx,
            ),
        )
