"""Consolidation Breakout Detector for Pattern Replay

This module implements the ConsolidationBreakoutDetector class: a
consolidation validated by range, ATR contraction, boundary touches and
drift, followed by a volume-backed breakout in either direction.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .config import ConsolidationBreakoutOptions
from .indicators import wilder_atr_series
from .models import Candle, Pattern, PatternMetadata, PatternType, TradeSide


@dataclass
class Consolidation:
    """盤整區間

    Attributes:
        high: 區間高點
        low: 區間低點
        avg_volume: 平均成交量（無成交量時為 0）
        range_pct: 區間寬度佔平均收盤比例
        atr_pct: ATR 佔平均收盤比例
    """
    high: float
    low: float
    avg_volume: float
    range_pct: float
    atr_pct: float


class ConsolidationBreakoutDetector:
    """盤整突破型態檢測器

    以盤整結束索引為掃描原點，在其後 breakout_lookahead 根K線內尋找
    收盤超出區間加緩衝的突破，並要求量能放大與跟進確認。

    Attributes:
        options: 檢測參數
    """

    def __init__(self, options: Optional[ConsolidationBreakoutOptions] = None):
        self.options = options or ConsolidationBreakoutOptions()
        self._atr_source: Optional[Sequence[Candle]] = None
        self._atr: List[Optional[float]] = []

    def _atr_for(self, candles: Sequence[Candle]) -> List[Optional[float]]:
        # Reuse the series while the scheduler scans the same candle list
        if self._atr_source is not candles or len(self._atr) != len(candles):
            self._atr = wilder_atr_series(candles, self.options.atr_period)
            self._atr_source = candles
        return self._atr

    def find_consolidation(
        self,
        candles: Sequence[Candle],
        end_index: int,
        atr: Sequence[Optional[float]]
    ) -> Optional[Consolidation]:
        """檢查以 end_index 結尾的視窗是否為有效盤整

        Args:
            candles: K 線序列
            end_index: 盤整視窗最後一根的索引
            atr: 與 candles 等長的 ATR 序列

        Returns:
            有效盤整區間，否則返回 None
        """
        opts = self.options
        start_index = end_index - opts.window + 1
        if start_index < 0 or end_index >= len(candles):
            return None

        window = candles[start_index:end_index + 1]
        high = max(c.high for c in window)
        low = min(c.low for c in window)
        avg_close = sum(c.close for c in window) / len(window)
        range_pct = (high - low) / avg_close
        if range_pct > opts.max_range_pct:
            return None

        current_atr = atr[end_index]
        if current_atr is None:
            return None
        atr_pct = current_atr / avg_close
        if atr_pct > opts.max_atr_pct:
            return None

        touch_eps = current_atr * 0.1
        high_touches = sum(1 for c in window if abs(c.high - high) <= touch_eps)
        low_touches = sum(1 for c in window if abs(c.low - low) <= touch_eps)
        if high_touches < opts.min_touches or low_touches < opts.min_touches:
            return None

        drift = abs(window[-1].close - window[0].close) / avg_close
        if drift > opts.max_drift_pct:
            return None

        volumes = [c.volume for c in window if c.volume > 0]
        avg_volume = sum(volumes) / len(volumes) if volumes else 0.0

        return Consolidation(
            high=high,
            low=low,
            avg_volume=avg_volume,
            range_pct=range_pct,
            atr_pct=atr_pct,
        )

    def detect(self, candles: Sequence[Candle], origin: int) -> Optional[Pattern]:
        """以 origin 作為盤整結束索引檢測突破

        Args:
            candles: K 線序列
            origin: 盤整視窗最後一根的索引

        Returns:
            識別到的型態，若不符合條件則返回 None
        """
        opts = self.options
        if origin < opts.window + opts.atr_period + 5:
            return None
        if origin + opts.breakout_lookahead + 1 >= len(candles):
            return None

        atr = self._atr_for(candles)
        consol = self.find_consolidation(candles, origin, atr)
        if consol is None:
            return None

        for offset in range(1, opts.breakout_lookahead + 1):
            breakout_idx = origin + offset
            breakout = candles[breakout_idx]
            current_atr = atr[breakout_idx]
            if current_atr is None:
                continue

            buffer = max(breakout.close * opts.min_buffer_pct, current_atr * opts.buffer_atr_mult)
            if breakout.close > consol.high + buffer:
                side = TradeSide.LONG
            elif breakout.close < consol.low - buffer:
                side = TradeSide.SHORT
            else:
                continue

            if consol.avg_volume > 0 and breakout.volume < consol.avg_volume * opts.min_volume_spike:
                continue

            if opts.require_follow_through and not self._has_follow_through(
                candles, breakout_idx, side, consol, buffer
            ):
                continue

            return self._build_pattern(candles, origin, breakout_idx, side, consol, buffer)

        return None

    def _has_follow_through(
        self,
        candles: Sequence[Candle],
        breakout_idx: int,
        side: TradeSide,
        consol: Consolidation,
        buffer: float
    ) -> bool:
        opts = self.options
        follow_idx = breakout_idx + 1
        if follow_idx >= len(candles):
            return False

        follow = candles[follow_idx]
        breakout_close = candles[breakout_idx].close
        follow_pct = (follow.close - breakout_close) / breakout_close

        if side == TradeSide.LONG:
            if follow_pct < opts.min_follow_through_pct:
                return False
            if opts.require_stay_outside and follow.close < consol.high + buffer:
                return False
        else:
            if follow_pct > -opts.min_follow_through_pct:
                return False
            if opts.require_stay_outside and follow.close > consol.low - buffer:
                return False
        return True

    def _build_pattern(
        self,
        candles: Sequence[Candle],
        origin: int,
        breakout_idx: int,
        side: TradeSide,
        consol: Consolidation,
        buffer: float
    ) -> Pattern:
        opts = self.options
        breakout = candles[breakout_idx]
        consol_range = consol.high - consol.low
        is_long = side == TradeSide.LONG

        expected_entry = breakout.close * (1.001 if is_long else 0.999)
        expected_exit = breakout.close + (consol_range * 2 if is_long else -consol_range * 2)
        stop_loss = consol.low - buffer if is_long else consol.high + buffer

        # Tighter range, lower ATR and a larger volume spike score higher
        volume_ratio = breakout.volume / consol.avg_volume if consol.avg_volume > 0 else 2.0
        range_component = max(0.0, 40 * (1 - consol.range_pct / opts.max_range_pct))
        atr_component = max(0.0, 30 * (1 - consol.atr_pct / opts.max_atr_pct))
        volume_component = min(30.0, (volume_ratio - 1) * 15) if consol.avg_volume > 0 else 20.0
        quality = int(round(min(95.0, range_component + atr_component + volume_component)))

        direction = "up" if is_long else "down"
        return Pattern(
            type=PatternType.BREAKOUT,
            start_index=max(0, origin - opts.window + 1),
            end_index=origin,
            expected_entry=expected_entry,
            expected_exit=expected_exit,
            stop_loss=stop_loss,
            metadata=PatternMetadata(
                quality=quality,
                description=f"Breakout {direction} from a {opts.window}-candle consolidation",
                hint=(
                    f"Range {consol.range_pct * 100:.2f}%, breakout volume x{volume_ratio:.1f}. "
                    f"Entry {expected_entry:.2f} | SL {stop_loss:.2f}"
                ),
                side=side,
                breakout_index=breakout_idx,
            ),
        )
