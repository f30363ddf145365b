"""Candle Source Abstract Interface - K 線數據源抽象介面

This module defines the abstract interface for providers that supply an
ordered candle series to the pattern scheduler and the replay engine.
"""

from abc import ABC, abstractmethod
from typing import List

from pattern_replay.core.models import Candle


class CandleSource(ABC):
    """K 線數據源抽象介面

    具體實作可以是 CSV 檔案、隨機生成器或其他數據提供者。
    返回的序列必須依時間嚴格遞增。
    """

    @abstractmethod
    def load(self) -> List[Candle]:
        """載入 K 線序列

        Returns:
            依 time 升序排列、time 不重複的 K 線列表

        Raises:
            InvalidParameterError: 來源內容無法解析
        """
        pass
