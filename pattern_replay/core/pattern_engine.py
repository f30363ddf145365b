"""Pattern Engine for Pattern Replay

This module implements the PatternEngine class, the scheduler that runs the
enabled detectors against a candle series, applies per-detector quotas and
the minimum-gap rule, and returns a time-ordered pattern list.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .breakout_detector import BreakoutDetector
from .config import DetectorConfig, DetectorQuota
from .consolidation_detector import ConsolidationBreakoutDetector
from .flag_detector import BullFlagDetector
from .models import Candle, Pattern
from .retest_detector import RetestDetector
from .strict_retest_detector import StrictRetestDetector

logger = logging.getLogger(__name__)

ScanFunction = Callable[[Sequence[Candle], int], Optional[Pattern]]


def patterns_conflict(candidate: Pattern, existing: Pattern, gap: int) -> bool:
    """檢查兩個型態在最小間隔內是否重疊

    當 [start-gap, end+gap] 區間相交，或起始索引相距小於 gap 時視為衝突。
    """
    if abs(candidate.start_index - existing.start_index) < gap:
        return True
    return (
        candidate.start_index < existing.end_index + gap
        and existing.start_index < candidate.end_index + gap
    )


class PatternEngine:
    """型態排程引擎

    嚴格回測檢測器（若啟用）優先執行並消耗其配額，之後依序執行
    突破、簡易回測、旗形與盤整突破檢測器。每個檢測器在達到配額後停止。

    Attributes:
        config: 排程設定
        strict_retest_detector: 嚴格回測檢測器
        breakout_detector: 突破檢測器
        retest_detector: 簡易回測檢測器
        flag_detector: 旗形檢測器
        consolidation_detector: 盤整突破檢測器
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.strict_retest_detector = StrictRetestDetector(self.config.strict_retest_options)
        self.breakout_detector = BreakoutDetector()
        self.retest_detector = RetestDetector()
        self.flag_detector = BullFlagDetector()
        self.consolidation_detector = ConsolidationBreakoutDetector(self.config.consolidation_options)

    def _can_accept(self, candidate: Pattern, accepted: Sequence[Pattern]) -> bool:
        if candidate.quality < self.config.min_quality:
            return False
        gap = self.config.min_gap
        return not any(patterns_conflict(candidate, p, gap) for p in accepted)

    def _run_strict_retest(
        self,
        candles: Sequence[Candle],
        quota: int,
        accepted: List[Pattern]
    ) -> int:
        found = 0
        for candidate in self.strict_retest_detector.detect_patterns(candles):
            if found >= quota:
                break
            if self._can_accept(candidate, accepted):
                accepted.append(candidate)
                found += 1
                logger.debug(
                    f"Accepted strict retest at {candidate.start_index}-{candidate.end_index} "
                    f"({candidate.metadata.side.value}, quality {candidate.quality})"
                )
        return found

    def _scan(
        self,
        candles: Sequence[Candle],
        name: str,
        scan: ScanFunction,
        quota: int,
        accepted: List[Pattern]
    ) -> int:
        """以滑動原點掃描單一檢測器，接受後跳過 min_gap 根K線"""
        margin = self.config.margin
        gap = self.config.min_gap
        found = 0
        i = margin

        if len(candles) <= 2 * margin:
            logger.warning(
                f"Not enough candles to scan for {name} "
                f"({len(candles)} <= 2 x margin {margin})"
            )
            return found

        while i < len(candles) - margin and found < quota:
            if any(abs(p.start_index - i) < gap for p in accepted):
                i += 1
                continue

            candidate = scan(candles, i)
            if candidate is not None and self._can_accept(candidate, accepted):
                accepted.append(candidate)
                found += 1
                logger.debug(
                    f"Accepted {name} at {candidate.start_index}-{candidate.end_index} "
                    f"(quality {candidate.quality})"
                )
                i += gap
            else:
                i += 1

        return found

    def detect(self, candles: Sequence[Candle], target_count: int = 8) -> List[Pattern]:
        """執行型態排程

        Args:
            candles: K 線序列
            target_count: 目標型態數量

        Returns:
            依 start_index 升序排列的型態列表；序列過短時返回空列表
        """
        config = self.config
        accepted: List[Pattern] = []

        if target_count <= 0:
            return accepted

        if config.strict_retest.enabled:
            quota = config.strict_retest.quota(target_count)
            found = self._run_strict_retest(candles, quota, accepted)
            logger.info(f"Found {found} strict retest patterns (quota {quota})")

        scanners: List[Tuple[str, DetectorQuota, ScanFunction]] = [
            ("breakout", config.breakout, self.breakout_detector.detect),
            ("retest", config.retest, self.retest_detector.detect),
            ("flag", config.flag, self.flag_detector.detect),
            ("consolidation breakout", config.consolidation_breakout, self.consolidation_detector.detect),
        ]
        for name, detector_quota, scan in scanners:
            if not detector_quota.enabled:
                continue
            quota = detector_quota.quota(target_count)
            found = self._scan(candles, name, scan, quota, accepted)
            logger.info(f"Found {found} {name} patterns (quota {quota})")

        accepted.sort(key=lambda p: p.start_index)
        logger.info(f"Scheduled {len(accepted)} patterns over {len(candles)} candles")
        return accepted


def detect_patterns(
    candles: Sequence[Candle],
    target_count: int = 8,
    config: Optional[DetectorConfig] = None
) -> List[Pattern]:
    """以給定設定檢測型態的便利函數"""
    return PatternEngine(config).detect(candles, target_count)
