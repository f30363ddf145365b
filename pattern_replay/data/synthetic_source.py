"""Synthetic Candle Source - 隨機 K 線生成器

This module generates reproducible candle series for demos and tests: a
random walk with momentum, mean reversion, volatility clustering and a
volume trend that rises with the size of the move.
"""

import logging
from typing import List, Optional

import numpy as np

from pattern_replay.core.models import Candle
from pattern_replay.data.data_source import CandleSource

logger = logging.getLogger(__name__)


class SyntheticCandleSource(CandleSource):
    """隨機 K 線生成器

    相同 seed 產生相同序列。

    Attributes:
        count: K 線數量
        start_price: 起始價格
        start_time: 第一根K線的 Unix 時間戳
        interval: K 線間隔秒數 (預設 3600)
        volatility: 初始波動度 (預設 0.003)
        momentum: 前一根漲跌幅的延續比例 (預設 0.4)
        mean_reversion: 向起始價回歸的力度 (預設 0.01)
        seed: 隨機種子
    """

    def __init__(
        self,
        count: int = 500,
        start_price: float = 50000.0,
        start_time: int = 1_700_000_000,
        interval: int = 3600,
        volatility: float = 0.003,
        momentum: float = 0.4,
        mean_reversion: float = 0.01,
        seed: Optional[int] = None
    ):
        if count < 1:
            raise ValueError("count must be positive")
        if start_price <= 0:
            raise ValueError("start_price must be positive")
        if interval < 1:
            raise ValueError("interval must be positive")
        if volatility <= 0:
            raise ValueError("volatility must be positive")

        self.count = count
        self.start_price = start_price
        self.start_time = start_time
        self.interval = interval
        self.volatility = volatility
        self.momentum = momentum
        self.mean_reversion = mean_reversion
        self.seed = seed

    def load(self) -> List[Candle]:
        rng = np.random.default_rng(self.seed)
        candles: List[Candle] = []

        price = self.start_price
        volatility = self.volatility
        previous_change = 0.0
        volume_trend = 1500.0

        for i in range(self.count):
            # Volatility clusters: it drifts slowly within fixed bounds
            volatility = float(np.clip(
                volatility + rng.normal(0.0, self.volatility * 0.1),
                self.volatility * 0.2,
                self.volatility * 5,
            ))

            change = (
                previous_change * self.momentum
                + (self.start_price - price) / self.start_price * self.mean_reversion
                + rng.normal(0.0, volatility)
            )
            change = max(change, -0.5)

            open_price = price
            close_price = open_price * (1 + change)
            high = max(open_price, close_price) * (1 + abs(rng.normal(0.0, volatility * 0.5)))
            low = min(open_price, close_price) * (1 - abs(rng.normal(0.0, volatility * 0.5)))

            volume_trend = volume_trend * 0.95 + rng.uniform(1000.0, 3000.0) * 0.05
            move_factor = 1 + abs(change) / volatility * 0.3
            volume = volume_trend * move_factor * rng.uniform(0.8, 1.2)

            candles.append(Candle(
                time=self.start_time + i * self.interval,
                open=open_price,
                high=high,
                low=low,
                close=close_price,
                volume=float(volume),
            ))

            previous_change = change
            price = close_price

        logger.info(f"Generated {len(candles)} synthetic candles (seed={self.seed})")
        return candles
