"""
模擬配置管理器 (Simulation Config Manager)

定義單一回放模擬的設定，並管理各資產的設定，支援讀取、儲存、
預設值回退與字典 / JSON 轉換。
"""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from pattern_replay.core.config import (
    ConsolidationBreakoutOptions,
    DetectorConfig,
    DetectorQuota,
    StrictRetestOptions,
)


@dataclass
class SimulationConfig:
    """回放模擬設定

    Attributes:
        initial_balance: 初始資金 (預設 10000)
        start_index: 起始K線索引 (預設 49，前 50 根作為歷史背景)
        target_pattern_count: 目標型態數量 (預設 8)
        min_candles: 建立模擬所需最少K線數 (預設 100)
        hint_lookahead: 型態提示的提前K線數 (預設 5)
        detector: 型態排程設定
        asset: 資產代碼
        timeframe: K 線週期
    """
    initial_balance: float = 10000.0
    start_index: int = 49
    target_pattern_count: int = 8
    min_candles: int = 100
    hint_lookahead: int = 5
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    asset: str = "UNKNOWN"
    timeframe: str = "1H"

    def __post_init__(self):
        if self.initial_balance <= 0:
            raise ValueError("initial_balance must be positive")
        if self.start_index < 0:
            raise ValueError("start_index must be non-negative")
        if self.target_pattern_count < 0:
            raise ValueError("target_pattern_count must be non-negative")
        if self.min_candles < 2:
            raise ValueError("min_candles must be at least 2")
        if self.start_index >= self.min_candles - 1:
            raise ValueError("start_index must leave at least one candle to replay")
        if self.hint_lookahead < 0:
            raise ValueError("hint_lookahead must be non-negative")


class SimulationConfigManager:
    """
    模擬配置管理器

    管理各資產的模擬配置，支援：
    - 全局配置（適用於所有資產）
    - 個別資產配置（覆蓋全局配置）
    - 配置的讀取、儲存與預設值回退

    使用記憶體儲存。
    """

    # 全局配置的特殊鍵值
    GLOBAL_CONFIG_KEY = "__global__"

    def __init__(self):
        self._configs: Dict[str, SimulationConfig] = {}

    def get_config(self, asset: Optional[str] = None) -> SimulationConfig:
        """
        獲取模擬配置

        優先順序：
        1. 個別資產配置（若 asset 有指定且存在）
        2. 全局配置（若存在）
        3. 預設配置

        Args:
            asset: 資產代碼，None 表示獲取全局配置

        Returns:
            對應的配置物件
        """
        if asset and asset in self._configs:
            return self._configs[asset]

        if self.GLOBAL_CONFIG_KEY in self._configs:
            return self._configs[self.GLOBAL_CONFIG_KEY]

        return self.get_default_config()

    def save_config(self, config: SimulationConfig, asset: Optional[str] = None) -> None:
        """
        儲存模擬配置

        Args:
            config: 要儲存的配置物件
            asset: 資產代碼，None 表示儲存為全局配置
        """
        key = asset if asset else self.GLOBAL_CONFIG_KEY
        self._configs[key] = config

    def get_default_config(self) -> SimulationConfig:
        return SimulationConfig()

    def list_configured_assets(self) -> List[str]:
        """列出所有有自訂配置的資產（不包含全局配置鍵）"""
        return [key for key in self._configs if key != self.GLOBAL_CONFIG_KEY]

    def delete_config(self, asset: Optional[str] = None) -> bool:
        """
        刪除配置

        Args:
            asset: 資產代碼，None 表示刪除全局配置

        Returns:
            刪除是否成功
        """
        key = asset if asset else self.GLOBAL_CONFIG_KEY
        if key in self._configs:
            del self._configs[key]
            return True
        return False

    def to_dict(self, config: SimulationConfig) -> Dict[str, Any]:
        """
        將配置轉換為字典格式

        Args:
            config: 配置物件

        Returns:
            可 JSON 序列化的字典
        """
        data = asdict(config)
        data["detector"]["strict_retest_options"]["retest_mode"] = (
            config.detector.strict_retest_options.retest_mode.value
        )
        return data

    def from_dict(self, data: Dict[str, Any]) -> SimulationConfig:
        """
        從字典建立配置物件，缺少的欄位使用預設值

        Args:
            data: 字典格式的配置資料

        Returns:
            配置物件
        """
        return SimulationConfig(
            initial_balance=float(data.get("initial_balance", 10000.0)),
            start_index=int(data.get("start_index", 49)),
            target_pattern_count=int(data.get("target_pattern_count", 8)),
            min_candles=int(data.get("min_candles", 100)),
            hint_lookahead=int(data.get("hint_lookahead", 5)),
            detector=self._detector_from_dict(data.get("detector", {})),
            asset=str(data.get("asset", "UNKNOWN")),
            timeframe=str(data.get("timeframe", "1H")),
        )

    @staticmethod
    def _detector_from_dict(data: Dict[str, Any]) -> DetectorConfig:
        defaults = DetectorConfig()

        def quota(name: str) -> DetectorQuota:
            if name not in data:
                return getattr(defaults, name)
            entry = data[name]
            return DetectorQuota(
                enabled=bool(entry.get("enabled", False)),
                share=float(entry.get("share", 0.0)),
            )

        return DetectorConfig(
            strict_retest=quota("strict_retest"),
            breakout=quota("breakout"),
            retest=quota("retest"),
            flag=quota("flag"),
            consolidation_breakout=quota("consolidation_breakout"),
            margin=int(data.get("margin", defaults.margin)),
            min_gap=int(data.get("min_gap", defaults.min_gap)),
            min_quality=int(data.get("min_quality", defaults.min_quality)),
            strict_retest_options=StrictRetestOptions(**data.get("strict_retest_options", {})),
            consolidation_options=ConsolidationBreakoutOptions(**data.get("consolidation_options", {})),
        )

    def to_json(self, config: SimulationConfig) -> str:
        return json.dumps(self.to_dict(config), ensure_ascii=False, indent=2)

    def from_json(self, json_str: str) -> SimulationConfig:
        data = json.loads(json_str)
        return self.from_dict(data)
