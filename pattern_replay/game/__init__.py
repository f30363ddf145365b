"""
Replay game module

Candle-by-candle simulation state machine, settlement, statistics and the
error hierarchy shared by the engine and the service facade.
"""

from .config import SimulationConfig, SimulationConfigManager
from .exceptions import (
    InsufficientBalanceError,
    InsufficientDataError,
    InvalidParameterError,
    InvalidStateError,
    NotFoundError,
    ReplayError,
)
from .models import (
    Account,
    ClosedPosition,
    ExitReason,
    Feedback,
    FeedbackType,
    GameState,
    GameStats,
    PatternEntry,
    PendingOrder,
    PendingOrderType,
    Position,
    TradeSummary,
)
from .stats import StatisticsAggregator
from .replay_engine import ReplayEngine

__all__ = [
    "SimulationConfig",
    "SimulationConfigManager",
    "ReplayError",
    "NotFoundError",
    "InvalidStateError",
    "InsufficientBalanceError",
    "InvalidParameterError",
    "InsufficientDataError",
    "Account",
    "ClosedPosition",
    "ExitReason",
    "Feedback",
    "FeedbackType",
    "GameState",
    "GameStats",
    "PatternEntry",
    "PendingOrder",
    "PendingOrderType",
    "Position",
    "TradeSummary",
    "StatisticsAggregator",
    "ReplayEngine",
]
