"""Bull Flag Detector for Pattern Replay

This module implements the BullFlagDetector class for identifying a strong
rise (the pole), a narrow consolidation (the flag), and a breakout above it.
"""

from typing import Optional, Sequence

from .models import Candle, Pattern, PatternMetadata, PatternType, TradeSide


class BullFlagDetector:
    """旗形型態檢測器

    Attributes:
        pole_size: 旗桿視窗K線數 (預設 8)
        min_pole_pct: 旗桿最小漲幅百分比 (預設 3.0)
        max_pole_pct: 旗桿最大漲幅百分比 (預設 15.0)
        flag_size: 旗面K線數 (預設 12)
        max_flag_range_pct: 旗面最大區間百分比 (預設 4.0)
        breakout_size: 突破觀察K線數 (預設 4)
        min_breakout: 最少突破K線數 (預設 3)
    """

    def __init__(
        self,
        pole_size: int = 8,
        min_pole_pct: float = 3.0,
        max_pole_pct: float = 15.0,
        flag_size: int = 12,
        max_flag_range_pct: float = 4.0,
        breakout_size: int = 4,
        min_breakout: int = 3
    ):
        if min_pole_pct > max_pole_pct:
            raise ValueError("min_pole_pct cannot exceed max_pole_pct")
        if min_breakout > breakout_size:
            raise ValueError("min_breakout cannot exceed breakout_size")

        self.pole_size = pole_size
        self.min_pole_pct = min_pole_pct
        self.max_pole_pct = max_pole_pct
        self.flag_size = flag_size
        self.max_flag_range_pct = max_flag_range_pct
        self.breakout_size = breakout_size
        self.min_breakout = min_breakout

    def detect(self, candles: Sequence[Candle], origin: int) -> Optional[Pattern]:
        """從 origin 開始檢測旗形型態

        檢測流程：
        1. 旗桿：首根收盤價到視窗最高價的漲幅介於 3%-15%
        2. 旗面：旗桿頂點之後 12 根K線區間不超過 4%，且末根收盤不高於旗桿頂點
        3. 突破：接下來 4 根中至少 3 根收盤高於旗面高點

        Args:
            candles: K 線序列
            origin: 旗桿起點索引

        Returns:
            識別到的型態，若不符合條件則返回 None
        """
        if origin < 0 or origin + self.pole_size >= len(candles):
            return None

        # Stage 1: pole
        pole = candles[origin:origin + self.pole_size]
        pole_start = pole[0].close
        pole_top = max(c.high for c in pole)
        pole_move_pct = (pole_top - pole_start) / pole_start * 100
        if pole_move_pct < self.min_pole_pct or pole_move_pct > self.max_pole_pct:
            return None

        # First candle reaching the top
        pole_top_idx = origin + next(i for i, c in enumerate(pole) if c.high == pole_top)

        flag_end = pole_top_idx + self.flag_size
        end_idx = flag_end + self.breakout_size
        if end_idx >= len(candles):
            return None

        # Stage 2: flag
        flag = candles[pole_top_idx:flag_end]
        flag_high = max(c.high for c in flag)
        flag_low = min(c.low for c in flag)
        flag_range_pct = (flag_high - flag_low) / flag_low * 100
        if flag_range_pct > self.max_flag_range_pct:
            return None
        if flag[-1].close > pole_top:
            return None

        # Stage 3: breakout
        breakout = candles[flag_end:end_idx]
        breakout_up = sum(1 for c in breakout if c.close > flag_high)
        if breakout_up < self.min_breakout:
            return None

        quality = int(round(min(95.0, 65.0 + pole_move_pct * 2)))

        return Pattern(
            type=PatternType.FLAG,
            start_index=origin,
            end_index=end_idx,
            expected_entry=flag_high * 1.002,
            expected_exit=pole_top * 1.03,
            stop_loss=flag_low * 0.995,
            metadata=PatternMetadata(
                quality=quality,
                description=f"Bull flag after a {pole_move_pct:.1f}% pole",
                hint="A tight flag after a strong move often resolves upward",
                side=TradeSide.LONG,
                breakout_index=flag_end,
            ),
        )
