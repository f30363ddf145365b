"""Breakout Detector for Pattern Replay

This module implements the BreakoutDetector class for identifying a tight
consolidation range followed by an upside breakout and continuation.
"""

from typing import Optional, Sequence

from .models import Candle, Pattern, PatternMetadata, PatternType, TradeSide


class BreakoutDetector:
    """突破型態檢測器

    三階段檢測，任一階段不符即返回 None：
    1. 盤整：固定視窗內 (最高價 - 最低價) / 最低價 不超過門檻
    2. 突破K線：盤整後第一根K線收盤價高於盤整高點至少指定比例
    3. 延續：之後數根K線中足夠數量收盤高於突破K線收盤價

    Attributes:
        consolidation_size: 盤整視窗K線數 (預設 15)
        max_range_pct: 盤整最大區間百分比 (預設 3.0)
        min_breakout_pct: 最小突破幅度百分比 (預設 0.3)
        continuation_size: 延續觀察K線數 (預設 5)
        min_continuation: 最少延續K線數 (預設 3)
    """

    def __init__(
        self,
        consolidation_size: int = 15,
        max_range_pct: float = 3.0,
        min_breakout_pct: float = 0.3,
        continuation_size: int = 5,
        min_continuation: int = 3
    ):
        if consolidation_size < 2:
            raise ValueError("consolidation_size must be at least 2")
        if continuation_size < 1:
            raise ValueError("continuation_size must be positive")
        if min_continuation > continuation_size:
            raise ValueError("min_continuation cannot exceed continuation_size")

        self.consolidation_size = consolidation_size
        self.max_range_pct = max_range_pct
        self.min_breakout_pct = min_breakout_pct
        self.continuation_size = continuation_size
        self.min_continuation = min_continuation

    def detect(self, candles: Sequence[Candle], origin: int) -> Optional[Pattern]:
        """從 origin 開始檢測突破型態

        Args:
            candles: K 線序列
            origin: 盤整視窗起點索引

        Returns:
            識別到的型態，若不符合條件則返回 None
        """
        breakout_idx = origin + self.consolidation_size
        end_idx = breakout_idx + self.continuation_size
        if origin < 0 or end_idx >= len(candles):
            return None

        # Stage 1: consolidation
        window = candles[origin:breakout_idx]
        range_high = max(c.high for c in window)
        range_low = min(c.low for c in window)
        range_pct = (range_high - range_low) / range_low * 100
        if range_pct > self.max_range_pct:
            return None

        # Stage 2: breakout candle
        breakout_close = candles[breakout_idx].close
        breakout_move = (breakout_close - range_high) / range_high * 100
        if breakout_move < self.min_breakout_pct:
            return None

        # Stage 3: continuation
        continuation = candles[breakout_idx + 1:end_idx + 1]
        continuation_up = sum(1 for c in continuation if c.close > breakout_close)
        if continuation_up < self.min_continuation:
            return None

        quality = int(round(min(95.0, 70.0 + range_pct * 5)))

        return Pattern(
            type=PatternType.BREAKOUT,
            start_index=origin,
            end_index=end_idx,
            expected_entry=breakout_close * 1.002,
            expected_exit=breakout_close * 1.02,
            stop_loss=range_low * 0.995,
            metadata=PatternMetadata(
                quality=quality,
                description=f"Breakout from a {range_pct:.1f}% range with continuation",
                hint="Watch for the close above the range high on rising volume",
                side=TradeSide.LONG,
                breakout_index=breakout_idx,
            ),
        )
