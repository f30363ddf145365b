"""
回放模擬資料模型

定義持倉、已平倉紀錄、掛單、帳戶、統計、回饋事件與遊戲狀態的資料類別。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from pattern_replay.core.models import Candle, Pattern, PatternType, TradeSide
from pattern_replay.game.config import SimulationConfig


class PendingOrderType(Enum):
    """掛單類型

    Attributes:
        BUY_STOP: 價格向上穿越目標價時買入
        BUY_LIMIT: 價格向下穿越目標價時買入
        SELL_STOP: 價格向下穿越目標價時賣出
        SELL_LIMIT: 價格向上穿越目標價時賣出
    """
    BUY_STOP = "buy_stop"
    BUY_LIMIT = "buy_limit"
    SELL_STOP = "sell_stop"
    SELL_LIMIT = "sell_limit"

    @property
    def side(self) -> TradeSide:
        if self in (PendingOrderType.BUY_STOP, PendingOrderType.BUY_LIMIT):
            return TradeSide.LONG
        return TradeSide.SHORT

    @property
    def crosses_up(self) -> bool:
        """是否在價格向上穿越時成交"""
        return self in (PendingOrderType.BUY_STOP, PendingOrderType.SELL_LIMIT)

    @classmethod
    def infer(cls, side: TradeSide, target_price: float, current_price: float) -> "PendingOrderType":
        """依目標價與現價的關係推斷掛單類型（高於現價為 Stop，低於為 Limit）"""
        if side == TradeSide.LONG:
            return cls.BUY_STOP if target_price > current_price else cls.BUY_LIMIT
        return cls.SELL_STOP if target_price < current_price else cls.SELL_LIMIT


class ExitReason(Enum):
    """平倉原因"""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"


class FeedbackType(Enum):
    """回饋事件類型"""
    PATTERN_HINT = "pattern_hint"
    TRADE_QUALITY = "trade_quality"
    WARNING = "warning"
    SUCCESS = "success"
    INFO = "info"


def compute_pnl(side: TradeSide, entry_price: float, price: float, quantity: float) -> Tuple[float, float]:
    """計算損益與損益百分比

    多單為 (price - entry) × quantity，空單相反；百分比以進場成本為基準。
    """
    if side == TradeSide.LONG:
        pnl = (price - entry_price) * quantity
    else:
        pnl = (entry_price - price) * quantity
    cost = entry_price * quantity
    pnl_percent = pnl / cost * 100 if cost > 0 else 0.0
    return pnl, pnl_percent


@dataclass(frozen=True)
class PatternEntry:
    """型態內進場紀錄

    Attributes:
        pattern_type: 進場時所在的型態類型
        entry_quality: 進場品質分數 (0-100)
    """
    pattern_type: PatternType
    entry_quality: int


@dataclass
class Position:
    """持倉

    Attributes:
        id: 持倉識別碼
        side: 多空方向
        entry_price: 進場價
        entry_time: 進場K線時間戳
        entry_index: 進場K線索引
        quantity: 數量 (> 0)
        current_pnl: 未實現損益，每根K線重新計算
        current_pnl_percent: 未實現損益百分比
        stop_loss: 止損價（可選）
        take_profit: 止盈價（可選）
        pattern_entry: 型態內進場紀錄（可選）
    """
    id: str
    side: TradeSide
    entry_price: float
    entry_time: int
    entry_index: int
    quantity: float
    current_pnl: float = 0.0
    current_pnl_percent: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    pattern_entry: Optional[PatternEntry] = None

    @property
    def cost(self) -> float:
        return self.entry_price * self.quantity

    def pnl_at(self, price: float) -> Tuple[float, float]:
        return compute_pnl(self.side, self.entry_price, price, self.quantity)

    def exit_reason_at(self, price: float) -> Optional[ExitReason]:
        """檢查收盤價是否觸發止損或止盈，止損優先"""
        if self.side == TradeSide.LONG:
            if self.stop_loss is not None and price <= self.stop_loss:
                return ExitReason.STOP_LOSS
            if self.take_profit is not None and price >= self.take_profit:
                return ExitReason.TAKE_PROFIT
        else:
            if self.stop_loss is not None and price >= self.stop_loss:
                return ExitReason.STOP_LOSS
            if self.take_profit is not None and price <= self.take_profit:
                return ExitReason.TAKE_PROFIT
        return None


@dataclass(frozen=True)
class ClosedPosition:
    """已平倉紀錄（只增不改）

    Attributes:
        id: 原持倉識別碼
        side: 多空方向
        entry_price: 進場價
        entry_time: 進場時間戳
        entry_index: 進場索引
        quantity: 數量
        exit_price: 出場價
        exit_time: 出場時間戳
        exit_index: 出場索引
        exit_pnl: 已實現損益
        exit_pnl_percent: 已實現損益百分比
        exit_reason: 平倉原因
        stop_loss: 平倉時的止損價
        take_profit: 平倉時的止盈價
        pattern_entry: 型態內進場紀錄
    """
    id: str
    side: TradeSide
    entry_price: float
    entry_time: int
    entry_index: int
    quantity: float
    exit_price: float
    exit_time: int
    exit_index: int
    exit_pnl: float
    exit_pnl_percent: float
    exit_reason: ExitReason
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    pattern_entry: Optional[PatternEntry] = None

    @property
    def is_win(self) -> bool:
        return self.exit_pnl > 0

    @classmethod
    def from_position(
        cls,
        position: Position,
        exit_price: float,
        exit_time: int,
        exit_index: int,
        reason: ExitReason
    ) -> "ClosedPosition":
        pnl, pnl_percent = position.pnl_at(exit_price)
        return cls(
            id=position.id,
            side=position.side,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            entry_index=position.entry_index,
            quantity=position.quantity,
            exit_price=exit_price,
            exit_time=exit_time,
            exit_index=exit_index,
            exit_pnl=pnl,
            exit_pnl_percent=pnl_percent,
            exit_reason=reason,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            pattern_entry=position.pattern_entry,
        )


@dataclass
class PendingOrder:
    """掛單

    成交前不扣除資金；成交時以目標價轉為持倉。

    Attributes:
        id: 掛單識別碼
        side: 多空方向
        order_type: 掛單類型
        target_price: 目標價
        quantity: 數量
        stop_loss: 成交後持倉的止損價（可選）
        take_profit: 成交後持倉的止盈價（可選）
        created_at_index: 建立時的K線索引
    """
    id: str
    side: TradeSide
    order_type: PendingOrderType
    target_price: float
    quantity: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    created_at_index: int = 0

    @property
    def cost(self) -> float:
        return self.target_price * self.quantity

    def is_triggered(self, prev_close: float, close: float) -> bool:
        """檢查前後兩根收盤價是否穿越目標價"""
        if self.order_type.crosses_up:
            return prev_close < self.target_price <= close
        return prev_close > self.target_price >= close


@dataclass
class Account:
    """模擬帳戶

    Attributes:
        balance: 可用現金
        equity: 淨值 = balance + Σ(進場價 × 數量) + 未實現損益
        initial_balance: 初始資金（模擬開始時固定）
        realized_pnl: 已實現損益
        unrealized_pnl: 未實現損益
    """
    balance: float
    equity: float
    initial_balance: float
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0


@dataclass(frozen=True)
class TradeSummary:
    """單筆交易摘要，用於最佳與最差交易

    Attributes:
        position_id: 持倉識別碼
        pnl: 已實現損益
        pnl_percent: 已實現損益百分比
        pattern_type: 進場所在型態（可選）
    """
    position_id: str
    pnl: float
    pnl_percent: float
    pattern_type: Optional[PatternType] = None


@dataclass
class GameStats:
    """交易統計

    Attributes:
        total_trades: 開倉次數（含掛單成交）
        winning_trades: 獲利平倉數
        losing_trades: 虧損平倉數（損益為 0 亦計入）
        win_rate: 勝率百分比
        average_win: 平均獲利
        average_loss: 平均虧損（正值）
        profit_factor: average_win / average_loss
        max_drawdown: 最大回撤金額
        max_drawdown_percent: 最大回撤佔初始資金百分比
        sharpe_ratio: 夏普比率（以單筆報酬計算，未年化）
        sortino_ratio: 索提諾比率
        calmar_ratio: 卡瑪比率
        pattern_recognition_score: 在型態內進場的平倉交易百分比
        average_entry_quality: 型態內進場的平均品質
        current_streak: 目前連勝（正）或連敗（負）
        max_win_streak: 最長連勝
        max_loss_streak: 最長連敗
        peak_equity: 回撤計算用的淨值高點
        best_trade: 最佳交易
        worst_trade: 最差交易
    """
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    pattern_recognition_score: float = 0.0
    average_entry_quality: float = 0.0
    current_streak: int = 0
    max_win_streak: int = 0
    max_loss_streak: int = 0
    peak_equity: float = 0.0
    best_trade: Optional[TradeSummary] = None
    worst_trade: Optional[TradeSummary] = None


@dataclass
class Feedback:
    """回饋事件

    Attributes:
        type: 事件類型
        message: 人類可讀的訊息
        timestamp: 發生時的K線時間戳
        data: 附加資料
    """
    type: FeedbackType
    message: str
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GameState:
    """單一模擬的聚合根

    Attributes:
        id: 模擬識別碼
        candles: K 線序列（只讀）
        patterns: 型態列表（建立時排程一次）
        current_index: 目前K線索引
        account: 帳戶
        positions: 未平倉持倉
        closed_positions: 已平倉紀錄
        pending_orders: 掛單
        stats: 交易統計
        feedback: 回饋事件紀錄
        config: 模擬設定
        is_complete: 是否已到達最後一根K線
        hinted_patterns: 已發出提示的型態索引
    """
    id: str
    candles: List[Candle]
    patterns: List[Pattern]
    current_index: int
    account: Account
    config: SimulationConfig
    positions: List[Position] = field(default_factory=list)
    closed_positions: List[ClosedPosition] = field(default_factory=list)
    pending_orders: List[PendingOrder] = field(default_factory=list)
    stats: GameStats = field(default_factory=GameStats)
    feedback: List[Feedback] = field(default_factory=list)
    is_complete: bool = False
    hinted_patterns: Set[int] = field(default_factory=set)

    @property
    def total_candles(self) -> int:
        return len(self.candles)

    @property
    def current_candle(self) -> Candle:
        return self.candles[self.current_index]

    def find_position(self, position_id: str) -> Optional[Position]:
        return next((p for p in self.positions if p.id == position_id), None)

    def find_pending_order(self, order_id: str) -> Optional[PendingOrder]:
        return next((o for o in self.pending_orders if o.id == order_id), None)

    def active_pattern(self, index: Optional[int] = None) -> Optional[Pattern]:
        """返回包含指定索引（預設為目前索引）的第一個型態"""
        if index is None:
            index = self.current_index
        return next((p for p in self.patterns if p.contains(index)), None)
