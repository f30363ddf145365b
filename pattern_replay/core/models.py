"""Core data models for Pattern Replay

This module defines the candle, pattern and retest-signal dataclasses and
enums shared by the indicators, the detectors and the replay engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PatternType(Enum):
    """型態類型"""
    BREAKOUT = "breakout"
    RETEST = "retest"
    FLAG = "flag"


class TradeSide(Enum):
    """交易方向"""
    LONG = "long"
    SHORT = "short"


class RetestMode(Enum):
    """回測觸碰判定模式

    Attributes:
        WICK: 僅接受影線觸碰
        CLOSE: 僅接受收盤價觸碰
        BOTH: 兩者皆可，優先採用收盤價觸碰
    """
    WICK = "WICK"
    CLOSE = "CLOSE"
    BOTH = "BOTH"


@dataclass(frozen=True)
class Candle:
    """K 線數據

    載入後不可變更，以在序列中的索引位置識別。

    Attributes:
        time: Unix 時間戳（秒），整個序列中嚴格遞增
        open: 開盤價
        high: 最高價
        low: 最低價
        close: 收盤價
        volume: 成交量（非負）
    """
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class PatternMetadata:
    """型態附加資訊

    Attributes:
        quality: 型態品質分數 (0-100 整數)
        description: 型態描述
        hint: 給使用者的交易提示
        side: 預期交易方向
        breakout_index: 突破K線索引（可選）
    """
    quality: int
    description: str
    hint: str = ""
    side: TradeSide = TradeSide.LONG
    breakout_index: Optional[int] = None


@dataclass(frozen=True)
class Pattern:
    """型態識別結果

    由檢測器在排程時建立一次，之後不再修改。

    Attributes:
        type: 型態類型
        start_index: 起始索引
        end_index: 結束索引 (start_index < end_index)
        expected_entry: 預期進場價
        expected_exit: 預期出場價
        stop_loss: 止損價
        metadata: 品質分數與提示
    """
    type: PatternType
    start_index: int
    end_index: int
    expected_entry: float
    expected_exit: float
    stop_loss: float
    metadata: PatternMetadata

    @property
    def quality(self) -> int:
        return self.metadata.quality

    def contains(self, index: int) -> bool:
        """檢查索引是否落在型態區間內（含兩端）"""
        return self.start_index <= index <= self.end_index


@dataclass(frozen=True)
class Pivot:
    """樞紐點（波段高點或低點）

    Attributes:
        index: 在序列中的位置
        price: 高點取 high，低點取 low
        time: 該 K 線的時間戳
    """
    index: int
    price: float
    time: int


@dataclass(frozen=True)
class RetestSignal:
    """嚴格回測檢測訊號

    成功的回測 (kind 以 RETEST_ 開頭) 帶有 retest_index 與 confirm_index；
    被拒絕的訊號 (REJECT_) 帶有 reject_index。

    Attributes:
        kind: RETEST_LONG_WICK / RETEST_SHORT_CLOSE / REJECT_LONG_TIMEOUT 等
        side: 交易方向
        level: 被突破的樞紐價位
        pivot_index: 樞紐點索引
        breakout_index: 突破K線索引
        time: 最終事件的時間戳
        is_reversal: True=趨勢反轉型態, False=趨勢延續型態
        pivot_type: "high" 或 "low"
        retest_index: 回測觸碰索引
        confirm_index: 確認索引
        reject_index: 拒絕索引
    """
    kind: str
    side: TradeSide
    level: float
    pivot_index: int
    breakout_index: int
    time: int
    is_reversal: bool
    pivot_type: str
    retest_index: Optional[int] = None
    confirm_index: Optional[int] = None
    reject_index: Optional[int] = None

    @property
    def is_successful(self) -> bool:
        return self.kind.startswith("RETEST_")
