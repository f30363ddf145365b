"""Replay Engine for Pattern Replay

This module implements the ReplayEngine class, the candle-by-candle state
machine of one simulation: advancing candles, stop-loss / take-profit
settlement, pending-order execution, manual trading and risk edits.

Every operation validates its arguments before touching the GameState, so
a raised ReplayError leaves the state unchanged. advance_candle computes
all of its effects first and commits them together at the end.
"""

import logging
import math
import numbers
import re
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pattern_replay.core.config import DetectorConfig
from pattern_replay.core.models import Candle, Pattern, TradeSide
from pattern_replay.core.pattern_engine import detect_patterns

from .config import SimulationConfig
from .exceptions import (
    InsufficientBalanceError,
    InsufficientDataError,
    InvalidParameterError,
    InvalidStateError,
    NotFoundError,
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
)
from .stats import StatisticsAggregator

logger = logging.getLogger(__name__)

SideLike = Union[TradeSide, str]
OrderTypeLike = Union[PendingOrderType, str]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

POSITION_EDIT_FIELDS = ("stop_loss", "take_profit")
ORDER_EDIT_FIELDS = ("target_price", "quantity", "stop_loss", "take_profit")


def parse_side(value: SideLike) -> TradeSide:
    """將 "long" / "short" 或 TradeSide 轉為 TradeSide"""
    if isinstance(value, TradeSide):
        return value
    try:
        return TradeSide(str(value).lower())
    except ValueError:
        raise InvalidStateError(
            f"Invalid position type: {value!r}", "Use 'long' or 'short'"
        ) from None


def parse_order_type(value: OrderTypeLike) -> PendingOrderType:
    """將 "buy_stop" / "buyStop" 或 PendingOrderType 轉為 PendingOrderType"""
    if isinstance(value, PendingOrderType):
        return value
    normalized = _CAMEL_BOUNDARY.sub("_", str(value)).lower()
    try:
        return PendingOrderType(normalized)
    except ValueError:
        allowed = ", ".join(t.value for t in PendingOrderType)
        raise InvalidStateError(f"Invalid order type: {value!r}", f"Use one of {allowed}") from None


def entry_quality(pattern: Pattern, price: float, index: int) -> int:
    """計算型態內進場品質 (0-100)

    以進場價與預期進場價的距離扣分（每 1% 扣 20 分），
    若在型態區間前 30% 內進場則加 10 分。
    """
    diff_pct = abs(price - pattern.expected_entry) / pattern.expected_entry * 100
    quality = max(0.0, 100.0 - diff_pct * 20)

    span = pattern.end_index - pattern.start_index
    if index - pattern.start_index <= span * 0.3:
        quality += 10

    return int(round(min(100.0, quality)))


def revalue(
    positions: Iterable[Position],
    price: float
) -> List[Position]:
    """以給定收盤價重新計算持倉損益，返回新的持倉列表"""
    revalued = []
    for position in positions:
        pnl, pnl_percent = position.pnl_at(price)
        revalued.append(replace(position, current_pnl=pnl, current_pnl_percent=pnl_percent))
    return revalued


def build_account(
    balance: float,
    positions: Sequence[Position],
    initial_balance: float,
    realized_pnl: float
) -> Account:
    """依持倉重建帳戶：equity = balance + Σ成本 + 未實現損益"""
    unrealized = sum(p.current_pnl for p in positions)
    committed = sum(p.cost for p in positions)
    return Account(
        balance=balance,
        equity=balance + committed + unrealized,
        initial_balance=initial_balance,
        realized_pnl=realized_pnl,
        unrealized_pnl=unrealized,
    )


class ReplayEngine:
    """K 線回放狀態機

    狀態：Active（current_index < total_candles - 1）→ Complete（到達最後一根）。
    Complete 為終止狀態，只能建立新的模擬離開。

    Attributes:
        aggregator: 統計彙總器
        id_factory: 產生識別碼的函數，參數為前綴
    """

    def __init__(
        self,
        aggregator: Optional[StatisticsAggregator] = None,
        id_factory: Optional[Callable[[str], str]] = None
    ):
        self.aggregator = aggregator or StatisticsAggregator()
        self.id_factory = id_factory or (lambda prefix: f"{prefix}_{uuid.uuid4().hex[:12]}")

    # ------------------------------------------------------------------
    # Simulation lifecycle
    # ------------------------------------------------------------------

    def detect_patterns(
        self,
        candles: Sequence[Candle],
        target_count: int = 8,
        config: Optional[DetectorConfig] = None
    ) -> List[Pattern]:
        return detect_patterns(candles, target_count, config)

    def create_simulation(
        self,
        candles: Sequence[Candle],
        config: Optional[SimulationConfig] = None,
        patterns: Optional[List[Pattern]] = None,
        game_id: Optional[str] = None
    ) -> GameState:
        """建立新的模擬

        Args:
            candles: 依時間排序的 K 線序列
            config: 模擬設定，None 使用預設
            patterns: 預先排程的型態，None 則依 config.detector 檢測
            game_id: 模擬識別碼，None 則自動產生

        Returns:
            新的 GameState

        Raises:
            InsufficientDataError: K 線數少於 config.min_candles
        """
        config = config or SimulationConfig()
        if len(candles) < config.min_candles:
            raise InsufficientDataError(config.min_candles, len(candles))

        candles = list(candles)
        if patterns is None:
            patterns = self.detect_patterns(candles, config.target_pattern_count, config.detector)

        initial = config.initial_balance
        state = GameState(
            id=game_id or str(uuid.uuid4()),
            candles=candles,
            patterns=list(patterns),
            current_index=config.start_index,
            account=Account(balance=initial, equity=initial, initial_balance=initial),
            config=config,
            stats=GameStats(peak_equity=initial),
        )

        start = state.current_candle
        state.feedback.append(Feedback(
            type=FeedbackType.INFO,
            message=f"Simulation started on {config.asset} {config.timeframe} with {len(patterns)} patterns",
            timestamp=start.time,
            data={"total_candles": len(candles), "patterns": len(patterns)},
        ))
        hints, hinted = self._pattern_hints(state, state.current_index)
        state.feedback.extend(hints)
        state.hinted_patterns = hinted

        logger.info(
            f"Created simulation {state.id}: {len(candles)} candles, "
            f"{len(patterns)} patterns, balance {initial:.2f}"
        )
        return state

    def advance_candle(self, state: GameState) -> GameState:
        """前進一根K線並依序結算

        順序：止損/止盈 → 掛單成交 → 重算損益 → 重算帳戶 → 型態提示。
        到達最後一根K線時結算後標記為 Complete。

        Raises:
            InvalidStateError: 模擬已完成
        """
        self._require_active(state)

        index = state.current_index + 1
        candle = state.candles[index]
        price = candle.close
        prev_close = state.current_candle.close
        initial = state.account.initial_balance

        balance = state.account.balance
        realized = state.account.realized_pnl
        stats = state.stats
        feedback: List[Feedback] = []

        # 1. Stop-loss / take-profit on the new close
        survivors: List[Position] = []
        newly_closed: List[ClosedPosition] = []
        for position in state.positions:
            reason = position.exit_reason_at(price)
            if reason is None:
                survivors.append(position)
                continue

            closed = ClosedPosition.from_position(position, price, candle.time, index, reason)
            balance += position.cost + closed.exit_pnl
            realized += closed.exit_pnl
            newly_closed.append(closed)
            feedback.append(self._closure_feedback(closed, candle.time))
            logger.debug(
                f"{reason.value} hit for {position.id} at {price:.4f} (pnl {closed.exit_pnl:.2f})"
            )

        closed_positions = list(state.closed_positions)
        if newly_closed:
            equity = build_account(balance, revalue(survivors, price), initial, realized).equity
            for closed in newly_closed:
                closed_positions.append(closed)
                stats = self.aggregator.record_closure(stats, closed, closed_positions, equity, initial)

        # 2. Pending orders on the close-to-close crossing
        pending: List[PendingOrder] = []
        for order in state.pending_orders:
            if not order.is_triggered(prev_close, price):
                pending.append(order)
                continue

            if order.cost > balance:
                pending.append(order)
                feedback.append(Feedback(
                    type=FeedbackType.WARNING,
                    message=(
                        f"Order {order.id} triggered at {order.target_price:.2f} "
                        f"but balance {balance:.2f} cannot cover {order.cost:.2f}"
                    ),
                    timestamp=candle.time,
                    data={"order_id": order.id},
                ))
                logger.warning(f"Pending order {order.id} not filled: insufficient balance")
                continue

            balance -= order.cost
            position = Position(
                id=self.id_factory("pos"),
                side=order.side,
                entry_price=order.target_price,
                entry_time=candle.time,
                entry_index=index,
                quantity=order.quantity,
                stop_loss=order.stop_loss,
                take_profit=order.take_profit,
                pattern_entry=self._pattern_entry(state, index, order.target_price),
            )
            survivors.append(position)
            stats = replace(stats, total_trades=stats.total_trades + 1)
            feedback.append(Feedback(
                type=FeedbackType.SUCCESS,
                message=(
                    f"{order.order_type.value} order filled: {order.side.value.upper()} "
                    f"{order.quantity:g} @ {order.target_price:.2f}"
                ),
                timestamp=candle.time,
                data={"order_id": order.id, "position_id": position.id},
            ))
            logger.debug(f"Filled pending order {order.id} at {order.target_price:.4f}")

        # 3. and 4. Revalue positions and rebuild the account
        positions = revalue(survivors, price)
        account = build_account(balance, positions, initial, realized)

        # 5. Pattern hints
        hints, hinted = self._pattern_hints(state, index)
        feedback.extend(hints)

        is_complete = index >= state.total_candles - 1

        state.current_index = index
        state.positions = positions
        state.closed_positions = closed_positions
        state.pending_orders = pending
        state.account = account
        state.stats = stats
        state.feedback = state.feedback + feedback
        state.hinted_patterns = hinted
        state.is_complete = is_complete

        if is_complete:
            logger.info(f"Simulation {state.id} complete at candle {index}")
        else:
            logger.debug(f"Simulation {state.id} advanced to candle {index}")
        return state

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def open_position(
        self,
        state: GameState,
        side: SideLike,
        quantity: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None
    ) -> Tuple[Position, Account]:
        """以目前收盤價開倉

        Raises:
            InvalidStateError: 模擬已完成或方向無效
            InvalidParameterError: 數量或止損止盈無效
            InsufficientBalanceError: 成本超過可用資金
        """
        self._require_active(state)
        side = parse_side(side)
        self._require_positive("quantity", quantity)

        candle = state.current_candle
        price = candle.close
        self._validate_risk_levels(side, price, stop_loss, take_profit)

        cost = price * quantity
        if cost > state.account.balance:
            raise InsufficientBalanceError(cost, state.account.balance)

        pattern_entry = self._pattern_entry(state, state.current_index, price)
        position = Position(
            id=self.id_factory("pos"),
            side=side,
            entry_price=price,
            entry_time=candle.time,
            entry_index=state.current_index,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            pattern_entry=pattern_entry,
        )

        state.positions = state.positions + [position]
        state.account = build_account(
            state.account.balance - cost,
            state.positions,
            state.account.initial_balance,
            state.account.realized_pnl,
        )
        state.stats = replace(state.stats, total_trades=state.stats.total_trades + 1)

        if pattern_entry is not None:
            state.feedback.append(Feedback(
                type=FeedbackType.TRADE_QUALITY,
                message=(
                    f"Entered inside a {pattern_entry.pattern_type.value} pattern "
                    f"(entry quality {pattern_entry.entry_quality})"
                ),
                timestamp=candle.time,
                data={"position_id": position.id, "entry_quality": pattern_entry.entry_quality},
            ))
        state.feedback.append(Feedback(
            type=FeedbackType.INFO,
            message=f"Opened {side.value.upper()} {quantity:g} @ {price:.2f}",
            timestamp=candle.time,
            data={"position_id": position.id},
        ))

        logger.debug(f"Opened {side.value} {position.id}: {quantity} @ {price:.4f}")
        return position, state.account

    def close_position(self, state: GameState, position_id: str) -> Tuple[ClosedPosition, Account]:
        """以目前收盤價手動平倉

        Raises:
            NotFoundError: 持倉不存在
        """
        position = state.find_position(position_id)
        if position is None:
            raise NotFoundError("position", position_id)

        candle = state.current_candle
        closed = ClosedPosition.from_position(
            position, candle.close, candle.time, state.current_index, ExitReason.MANUAL
        )

        remaining = revalue([p for p in state.positions if p.id != position_id], candle.close)
        account = build_account(
            state.account.balance + position.cost + closed.exit_pnl,
            remaining,
            state.account.initial_balance,
            state.account.realized_pnl + closed.exit_pnl,
        )
        closed_positions = state.closed_positions + [closed]
        stats = self.aggregator.record_closure(
            state.stats, closed, closed_positions, account.equity, account.initial_balance
        )

        state.positions = remaining
        state.closed_positions = closed_positions
        state.account = account
        state.stats = stats
        state.feedback.append(self._closure_feedback(closed, candle.time))

        logger.debug(f"Closed {position_id} manually at {candle.close:.4f} (pnl {closed.exit_pnl:.2f})")
        return closed, account

    def place_pending_order(
        self,
        state: GameState,
        side: SideLike,
        target_price: float,
        quantity: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        order_type: Optional[OrderTypeLike] = None
    ) -> PendingOrder:
        """建立掛單；未指定類型時依目標價與現價推斷

        資金在成交時才扣除，但下單時須足以支付目標價 × 數量。

        Raises:
            InvalidStateError: 模擬已完成，或類型與方向不符
            InvalidParameterError: 價格、數量或止損止盈無效
            InsufficientBalanceError: 目標成本超過可用資金
        """
        self._require_active(state)
        side = parse_side(side)
        self._require_positive("target_price", target_price)
        self._require_positive("quantity", quantity)
        self._validate_risk_levels(side, target_price, stop_loss, take_profit)

        if order_type is None:
            resolved = PendingOrderType.infer(side, target_price, state.current_candle.close)
        else:
            resolved = parse_order_type(order_type)
            if resolved.side != side:
                raise InvalidStateError(
                    f"Order type {resolved.value} does not match side {side.value}"
                )

        cost = target_price * quantity
        if cost > state.account.balance:
            raise InsufficientBalanceError(cost, state.account.balance)

        order = PendingOrder(
            id=self.id_factory("ord"),
            side=side,
            order_type=resolved,
            target_price=target_price,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            created_at_index=state.current_index,
        )
        state.pending_orders = state.pending_orders + [order]
        state.feedback.append(Feedback(
            type=FeedbackType.INFO,
            message=f"Placed {resolved.value} order: {quantity:g} @ {target_price:.2f}",
            timestamp=state.current_candle.time,
            data={"order_id": order.id},
        ))

        logger.debug(f"Placed {resolved.value} {order.id} at {target_price:.4f}")
        return order

    def cancel_pending_order(self, state: GameState, order_id: str) -> None:
        """取消掛單

        Raises:
            NotFoundError: 掛單不存在
        """
        if state.find_pending_order(order_id) is None:
            raise NotFoundError("order", order_id)

        state.pending_orders = [o for o in state.pending_orders if o.id != order_id]
        state.feedback.append(Feedback(
            type=FeedbackType.INFO,
            message=f"Cancelled order {order_id}",
            timestamp=state.current_candle.time,
            data={"order_id": order_id},
        ))

    def edit_position(
        self,
        state: GameState,
        position_id: str,
        updates: Mapping[str, Any]
    ) -> Position:
        """修改持倉的止損 / 止盈，值為 None 表示移除

        Raises:
            NotFoundError: 持倉不存在
            InvalidParameterError: 欄位或價位無效
        """
        position = state.find_position(position_id)
        if position is None:
            raise NotFoundError("position", position_id)
        self._check_fields(updates, POSITION_EDIT_FIELDS)

        stop_loss = updates.get("stop_loss", position.stop_loss)
        take_profit = updates.get("take_profit", position.take_profit)
        self._validate_risk_levels(position.side, state.current_candle.close, stop_loss, take_profit)

        edited = replace(position, stop_loss=stop_loss, take_profit=take_profit)
        state.positions = [edited if p.id == position_id else p for p in state.positions]
        return edited

    def edit_pending_order(
        self,
        state: GameState,
        order_id: str,
        updates: Mapping[str, Any]
    ) -> PendingOrder:
        """修改掛單；修改目標價時重新推斷掛單類型

        Raises:
            NotFoundError: 掛單不存在
            InvalidParameterError: 欄位或數值無效
            InsufficientBalanceError: 新的目標成本超過可用資金
        """
        order = state.find_pending_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        self._check_fields(updates, ORDER_EDIT_FIELDS)

        target_price = updates.get("target_price", order.target_price)
        quantity = updates.get("quantity", order.quantity)
        stop_loss = updates.get("stop_loss", order.stop_loss)
        take_profit = updates.get("take_profit", order.take_profit)

        self._require_positive("target_price", target_price)
        self._require_positive("quantity", quantity)
        self._validate_risk_levels(order.side, target_price, stop_loss, take_profit)

        cost = target_price * quantity
        if cost > state.account.balance:
            raise InsufficientBalanceError(cost, state.account.balance)

        order_type = order.order_type
        if "target_price" in updates:
            order_type = PendingOrderType.infer(order.side, target_price, state.current_candle.close)

        edited = replace(
            order,
            target_price=target_price,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            order_type=order_type,
        )
        state.pending_orders = [edited if o.id == order_id else o for o in state.pending_orders]
        return edited

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_active(state: GameState) -> None:
        if state.is_complete:
            raise InvalidStateError(
                f"Simulation {state.id} is complete",
                "Create a new simulation to keep trading",
            )

    @staticmethod
    def _require_positive(name: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidParameterError(name, value, "must be a number")
        if not math.isfinite(value):
            raise InvalidParameterError(name, value, "must be finite")
        if value <= 0:
            raise InvalidParameterError(name, value, "must be positive")

    @classmethod
    def _validate_risk_levels(
        cls,
        side: TradeSide,
        reference: float,
        stop_loss: Optional[float],
        take_profit: Optional[float]
    ) -> None:
        """止損須在參考價的虧損側，止盈須在獲利側"""
        is_long = side == TradeSide.LONG
        if stop_loss is not None:
            cls._require_positive("stop_loss", stop_loss)
            if (is_long and stop_loss >= reference) or (not is_long and stop_loss <= reference):
                side_text = "below" if is_long else "above"
                raise InvalidParameterError(
                    "stop_loss", stop_loss, f"must be {side_text} {reference:.4f} for a {side.value} position"
                )
        if take_profit is not None:
            cls._require_positive("take_profit", take_profit)
            if (is_long and take_profit <= reference) or (not is_long and take_profit >= reference):
                side_text = "above" if is_long else "below"
                raise InvalidParameterError(
                    "take_profit", take_profit, f"must be {side_text} {reference:.4f} for a {side.value} position"
                )

    @staticmethod
    def _check_fields(updates: Mapping[str, Any], allowed: Sequence[str]) -> None:
        for name in updates:
            if name not in allowed:
                raise InvalidParameterError(name, updates[name], f"editable fields are {', '.join(allowed)}")

    @staticmethod
    def _pattern_entry(state: GameState, index: int, price: float) -> Optional[PatternEntry]:
        pattern = state.active_pattern(index)
        if pattern is None:
            return None
        return PatternEntry(pattern_type=pattern.type, entry_quality=entry_quality(pattern, price, index))

    @staticmethod
    def _pattern_hints(state: GameState, index: int) -> Tuple[List[Feedback], set]:
        """為起點在提示範圍內且尚未提示過的型態產生提示"""
        hinted = set(state.hinted_patterns)
        hints = []
        lookahead = state.config.hint_lookahead
        timestamp = state.candles[index].time

        for number, pattern in enumerate(state.patterns):
            if number in hinted or abs(pattern.start_index - index) > lookahead:
                continue
            hinted.add(number)
            message = pattern.metadata.hint or pattern.metadata.description
            hints.append(Feedback(
                type=FeedbackType.PATTERN_HINT,
                message=message,
                timestamp=timestamp,
                data={
                    "pattern_type": pattern.type.value,
                    "start_index": pattern.start_index,
                    "quality": pattern.quality,
                },
            ))

        return hints, hinted

    @staticmethod
    def _closure_feedback(closed: ClosedPosition, timestamp: int) -> Feedback:
        labels: Dict[ExitReason, str] = {
            ExitReason.STOP_LOSS: "Stop-loss hit",
            ExitReason.TAKE_PROFIT: "Take-profit hit",
            ExitReason.MANUAL: "Position closed",
        }
        return Feedback(
            type=FeedbackType.SUCCESS if closed.is_win else FeedbackType.WARNING,
            message=(
                f"{labels[closed.exit_reason]}: {closed.side.value.upper()} @ {closed.exit_price:.2f}, "
                f"PnL {closed.exit_pnl:+.2f} ({closed.exit_pnl_percent:+.2f}%)"
            ),
            timestamp=timestamp,
            data={"position_id": closed.id, "exit_reason": closed.exit_reason.value},
        )
