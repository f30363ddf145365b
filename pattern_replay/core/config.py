"""Detector configuration for Pattern Replay

Named, validated parameter sets for the pattern detectors and the
scheduler. Which detectors run, and with what share of the target pattern
count, is decided here at scheduling time.
"""

import math
from dataclasses import dataclass, field

from .models import RetestMode


@dataclass
class StrictRetestOptions:
    """嚴格回測檢測參數

    緩衝區皆以 ATR 倍數表示，使檢測能適應各資產的波動度。

    Attributes:
        pivot_left: 樞紐點左側K線數 (預設 2)
        pivot_right: 樞紐點右側K線數 (預設 2)
        use_trend_filter: 是否啟用均線趨勢過濾 (預設 True)
        ma_period: 趨勢均線週期 (預設 200)
        atr_period: ATR 週期 (預設 14)
        breakout_atr_mult: 突破緩衝 ATR 倍數 (預設 0.10)
        retest_atr_mult: 回測容差 ATR 倍數 (預設 0.20)
        confirm_atr_mult: 確認緩衝 ATR 倍數 (預設 0.05)
        invalid_atr_mult: 失效門檻 ATR 倍數 (預設 0.25)
        min_bars_after_breakout: 突破後最少等待K線數 (預設 5)
        max_bars_to_wait_retest: 等待回測的最大K線數 (預設 60)
        retest_mode: 回測觸碰判定模式 (預設 BOTH)
        min_candles: 執行檢測所需的最少K線數 (預設 50)
    """
    pivot_left: int = 2
    pivot_right: int = 2
    use_trend_filter: bool = True
    ma_period: int = 200
    atr_period: int = 14
    breakout_atr_mult: float = 0.10
    retest_atr_mult: float = 0.20
    confirm_atr_mult: float = 0.05
    invalid_atr_mult: float = 0.25
    min_bars_after_breakout: int = 5
    max_bars_to_wait_retest: int = 60
    retest_mode: RetestMode = RetestMode.BOTH
    min_candles: int = 50

    def __post_init__(self):
        if self.pivot_left < 1 or self.pivot_right < 1:
            raise ValueError("pivot_left and pivot_right must be positive")
        if self.atr_period < 1:
            raise ValueError("atr_period must be positive")
        if self.ma_period < 1:
            raise ValueError("ma_period must be positive")
        for name in ("breakout_atr_mult", "retest_atr_mult", "confirm_atr_mult", "invalid_atr_mult"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.min_bars_after_breakout < 1:
            raise ValueError("min_bars_after_breakout must be positive")
        if self.max_bars_to_wait_retest < self.min_bars_after_breakout:
            raise ValueError("max_bars_to_wait_retest must be >= min_bars_after_breakout")
        if isinstance(self.retest_mode, str):
            self.retest_mode = RetestMode(self.retest_mode.upper())


@dataclass
class ConsolidationBreakoutOptions:
    """盤整突破檢測參數

    Attributes:
        window: 盤整視窗K線數 (預設 15)
        max_range_pct: 最大價格區間比例 (預設 2%)
        max_atr_pct: 最大 ATR 比例 (預設 2.5%)
        atr_period: ATR 週期 (預設 14)
        min_touches: 上下緣最少觸碰次數 (預設 2)
        max_drift_pct: 最大漂移比例 (預設 0.8%)
        min_buffer_pct: 最小突破緩衝比例 (預設 0.05%)
        buffer_atr_mult: 突破緩衝 ATR 倍數 (預設 0.2)
        min_volume_spike: 最小量能放大倍數 (預設 1.3)
        breakout_lookahead: 向後尋找突破的K線數 (預設 3)
        require_follow_through: 是否要求跟進K線 (預設 True)
        min_follow_through_pct: 最小跟進幅度 (預設 0.1%)
        require_stay_outside: 跟進K線是否須留在區間外 (預設 True)
    """
    window: int = 15
    max_range_pct: float = 0.02
    max_atr_pct: float = 0.025
    atr_period: int = 14
    min_touches: int = 2
    max_drift_pct: float = 0.008
    min_buffer_pct: float = 0.0005
    buffer_atr_mult: float = 0.2
    min_volume_spike: float = 1.3
    breakout_lookahead: int = 3
    require_follow_through: bool = True
    min_follow_through_pct: float = 0.001
    require_stay_outside: bool = True

    def __post_init__(self):
        if self.window < 2:
            raise ValueError("window must be at least 2")
        if self.atr_period < 1:
            raise ValueError("atr_period must be positive")
        if self.breakout_lookahead < 1:
            raise ValueError("breakout_lookahead must be positive")
        if self.max_range_pct <= 0 or self.max_atr_pct <= 0:
            raise ValueError("max_range_pct and max_atr_pct must be positive")


@dataclass
class DetectorQuota:
    """單一檢測器的啟用狀態與配額比例

    Attributes:
        enabled: 是否啟用
        share: 佔目標型態數量的比例 (0-1)
    """
    enabled: bool = False
    share: float = 0.0

    def __post_init__(self):
        if self.share < 0 or self.share > 1:
            raise ValueError("share must be between 0 and 1")

    def quota(self, target_count: int) -> int:
        """依目標數量計算配額（無條件進位）"""
        if not self.enabled or target_count <= 0:
            return 0
        # Round before ceil so 8 * 0.35 does not become 2.8000000000000003 -> 3
        return math.ceil(round(target_count * self.share, 9))


@dataclass
class DetectorConfig:
    """型態排程設定

    預設僅啟用嚴格回測檢測器並佔滿全部配額；突破、簡易回測、旗形與
    盤整突破檢測器保留可用但預設停用。

    Attributes:
        strict_retest: 嚴格回測檢測器配額
        breakout: 突破檢測器配額
        retest: 簡易回測檢測器配額
        flag: 旗形檢測器配額
        consolidation_breakout: 盤整突破檢測器配額
        margin: 掃描起點與終點的保留K線數 (預設 50)
        min_gap: 型態之間的最小間隔 (預設 30)
        min_quality: 接受型態的最低品質分數 (預設 70)
        strict_retest_options: 嚴格回測參數
        consolidation_options: 盤整突破參數
    """
    strict_retest: DetectorQuota = field(default_factory=lambda: DetectorQuota(True, 1.0))
    breakout: DetectorQuota = field(default_factory=lambda: DetectorQuota(False, 0.40))
    retest: DetectorQuota = field(default_factory=lambda: DetectorQuota(False, 0.35))
    flag: DetectorQuota = field(default_factory=lambda: DetectorQuota(False, 0.25))
    consolidation_breakout: DetectorQuota = field(default_factory=lambda: DetectorQuota(False, 0.40))
    margin: int = 50
    min_gap: int = 30
    min_quality: int = 70
    strict_retest_options: StrictRetestOptions = field(default_factory=StrictRetestOptions)
    consolidation_options: ConsolidationBreakoutOptions = field(default_factory=ConsolidationBreakoutOptions)

    def __post_init__(self):
        if self.margin < 0:
            raise ValueError("margin must be non-negative")
        if self.min_gap < 0:
            raise ValueError("min_gap must be non-negative")
        if self.min_quality < 0 or self.min_quality > 100:
            raise ValueError("min_quality must be between 0 and 100")

    @classmethod
    def legacy(cls) -> "DetectorConfig":
        """僅啟用固定百分比檢測器（突破、簡易回測、旗形）的設定"""
        return cls(
            strict_retest=DetectorQuota(False, 1.0),
            breakout=DetectorQuota(True, 0.40),
            retest=DetectorQuota(True, 0.35),
            flag=DetectorQuota(True, 0.25),
        )
