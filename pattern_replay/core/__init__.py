from .models import (
    Candle,
    Pattern,
    PatternMetadata,
    PatternType,
    Pivot,
    RetestMode,
    RetestSignal,
    TradeSide,
)
from .config import (
    ConsolidationBreakoutOptions,
    DetectorConfig,
    DetectorQuota,
    StrictRetestOptions,
)
from .breakout_detector import BreakoutDetector
from .retest_detector import RetestDetector
from .strict_retest_detector import StrictRetestDetector
from .flag_detector import BullFlagDetector
from .consolidation_detector import ConsolidationBreakoutDetector
from .pattern_engine import PatternEngine, detect_patterns
