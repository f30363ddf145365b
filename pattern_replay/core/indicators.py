"""Trend and Pivot Analyzer for Pattern Replay

Pure functions computing pivot highs/lows, true range / ATR, simple moving
averages and average volume over a candle series. Every function is
side-effect free and deterministic for identical input slices.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .models import Candle, Pivot


def is_pivot_high(
    candles: Sequence[Candle],
    index: int,
    left_bars: int,
    right_bars: int
) -> bool:
    """判斷是否為樞紐高點

    當 candles[index].high 嚴格大於 [index-left_bars, index) 與
    (index, index+right_bars] 區間內每根K線的 high 時成立。
    窗口超出序列範圍時返回 False。

    Args:
        candles: K 線序列
        index: 待檢查的索引
        left_bars: 左側K線數
        right_bars: 右側K線數

    Returns:
        True 如果是樞紐高點
    """
    if index - left_bars < 0 or index + right_bars >= len(candles):
        return False

    current = candles[index].high
    for j in range(index - left_bars, index + right_bars + 1):
        if j != index and candles[j].high >= current:
            return False
    return True


def is_pivot_low(
    candles: Sequence[Candle],
    index: int,
    left_bars: int,
    right_bars: int
) -> bool:
    """判斷是否為樞紐低點

    與 is_pivot_high 對稱，使用 low 並以嚴格小於比較。
    """
    if index - left_bars < 0 or index + right_bars >= len(candles):
        return False

    current = candles[index].low
    for j in range(index - left_bars, index + right_bars + 1):
        if j != index and candles[j].low <= current:
            return False
    return True


def find_pivots(
    candles: Sequence[Candle],
    left_bars: int = 2,
    right_bars: int = 2
) -> Tuple[List[Pivot], List[Pivot]]:
    """找出所有樞紐高點與樞紐低點

    Args:
        candles: K 線序列
        left_bars: 左側K線數 (預設 2)
        right_bars: 右側K線數 (預設 2)

    Returns:
        (pivot_highs, pivot_lows)，皆按索引排序
    """
    pivot_highs: List[Pivot] = []
    pivot_lows: List[Pivot] = []

    for i in range(left_bars, len(candles) - right_bars):
        candle = candles[i]
        if is_pivot_high(candles, i, left_bars, right_bars):
            pivot_highs.append(Pivot(index=i, price=candle.high, time=candle.time))
        if is_pivot_low(candles, i, left_bars, right_bars):
            pivot_lows.append(Pivot(index=i, price=candle.low, time=candle.time))

    return pivot_highs, pivot_lows


def last_pivot_at_or_before(pivots: Sequence[Pivot], index: int) -> Optional[Pivot]:
    """二分搜尋索引不大於 index 的最後一個樞紐點"""
    lo, hi = 0, len(pivots) - 1
    answer = None

    while lo <= hi:
        mid = (lo + hi) // 2
        if pivots[mid].index <= index:
            answer = pivots[mid]
            lo = mid + 1
        else:
            hi = mid - 1

    return answer


def true_range(candles: Sequence[Candle]) -> np.ndarray:
    """計算每根K線的真實波幅

    第一根K線沒有前收盤價，以 high - low 計算。

    Returns:
        與 candles 等長的 numpy 陣列
    """
    if not candles:
        return np.array([], dtype=float)

    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)

    tr = highs - lows
    if len(candles) > 1:
        prev_close = closes[:-1]
        tr[1:] = np.maximum.reduce([
            highs[1:] - lows[1:],
            np.abs(highs[1:] - prev_close),
            np.abs(lows[1:] - prev_close),
        ])
    return tr


def average_true_range(candles: Sequence[Candle], period: int) -> float:
    """計算最近 period 根K線的平均真實波幅

    每根K線的真實波幅為 max(high-low, |high-prevClose|, |low-prevClose|)，
    因此需要至少 period+1 根K線，不足時返回 0。

    Args:
        candles: K 線序列
        period: ATR 週期

    Returns:
        ATR 值
    """
    if period < 1 or len(candles) < period + 1:
        return 0.0

    tr = true_range(candles)
    return float(np.mean(tr[-period:]))


def atr_series(candles: Sequence[Candle], period: int = 14) -> List[Optional[float]]:
    """計算逐根K線的簡單平均 ATR 序列

    第 i 根的值為 tr[i-period+1..i] 的算術平均；前 period-1 根為 None。
    """
    values: List[Optional[float]] = [None] * len(candles)
    if period < 1 or len(candles) < period:
        return values

    tr = true_range(candles)
    rolling = np.convolve(tr, np.ones(period) / period, mode="valid")
    for offset, value in enumerate(rolling):
        values[period - 1 + offset] = float(value)
    return values


def wilder_atr_series(candles: Sequence[Candle], period: int = 14) -> List[Optional[float]]:
    """計算 Wilder 平滑法的 ATR 序列

    以前 period 根真實波幅的平均為種子，之後
    ATR = (prevATR * (period-1) + TR) / period。
    """
    values: List[Optional[float]] = [None] * len(candles)
    if period < 1 or len(candles) < period:
        return values

    tr = true_range(candles)
    current = float(np.mean(tr[:period]))
    values[period - 1] = current
    for i in range(period, len(candles)):
        current = (current * (period - 1) + float(tr[i])) / period
        values[i] = current
    return values


def sma_series(candles: Sequence[Candle], period: int) -> List[Optional[float]]:
    """計算收盤價的簡單移動平均序列，前 period-1 根為 None"""
    values: List[Optional[float]] = [None] * len(candles)
    if period < 1 or len(candles) < period:
        return values

    closes = np.array([c.close for c in candles], dtype=float)
    rolling = np.convolve(closes, np.ones(period) / period, mode="valid")
    for offset, value in enumerate(rolling):
        values[period - 1 + offset] = float(value)
    return values


def average_volume(candles: Sequence[Candle], period: int) -> float:
    """計算傳入切片前 period 根K線的平均成交量

    Args:
        candles: K 線切片
        period: 平均週期

    Returns:
        平均成交量，數據不足時返回 0
    """
    if period < 1 or len(candles) < period:
        return 0.0

    return float(np.mean([c.volume for c in candles[:period]]))
