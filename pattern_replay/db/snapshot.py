"""Game State Snapshot serialization

This module converts a complete GameState to and from a JSON-compatible
dictionary, so callers can persist a simulation in any storage medium and
restore it later.
"""

import json
from typing import Any, Dict, Optional

from pattern_replay.core.models import (
    Candle,
    Pattern,
    PatternMetadata,
    PatternType,
    TradeSide,
)
from pattern_replay.game.config import SimulationConfigManager
from pattern_replay.game.models import (
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

SNAPSHOT_VERSION = 1

_config_manager = SimulationConfigManager()


def _pattern_entry_to_dict(entry: Optional[PatternEntry]) -> Optional[Dict[str, Any]]:
    if entry is None:
        return None
    return {"pattern_type": entry.pattern_type.value, "entry_quality": entry.entry_quality}


def _pattern_entry_from_dict(data: Optional[Dict[str, Any]]) -> Optional[PatternEntry]:
    if data is None:
        return None
    return PatternEntry(PatternType(data["pattern_type"]), int(data["entry_quality"]))


def _trade_summary_to_dict(summary: Optional[TradeSummary]) -> Optional[Dict[str, Any]]:
    if summary is None:
        return None
    return {
        "position_id": summary.position_id,
        "pnl": summary.pnl,
        "pnl_percent": summary.pnl_percent,
        "pattern_type": summary.pattern_type.value if summary.pattern_type else None,
    }


def _trade_summary_from_dict(data: Optional[Dict[str, Any]]) -> Optional[TradeSummary]:
    if data is None:
        return None
    pattern_type = data.get("pattern_type")
    return TradeSummary(
        position_id=data["position_id"],
        pnl=float(data["pnl"]),
        pnl_percent=float(data["pnl_percent"]),
        pattern_type=PatternType(pattern_type) if pattern_type else None,
    )


def pattern_to_dict(pattern: Pattern) -> Dict[str, Any]:
    meta = pattern.metadata
    return {
        "type": pattern.type.value,
        "start_index": pattern.start_index,
        "end_index": pattern.end_index,
        "expected_entry": pattern.expected_entry,
        "expected_exit": pattern.expected_exit,
        "stop_loss": pattern.stop_loss,
        "metadata": {
            "quality": meta.quality,
            "description": meta.description,
            "hint": meta.hint,
            "side": meta.side.value,
            "breakout_index": meta.breakout_index,
        },
    }


def pattern_from_dict(data: Dict[str, Any]) -> Pattern:
    meta = data["metadata"]
    return Pattern(
        type=PatternType(data["type"]),
        start_index=int(data["start_index"]),
        end_index=int(data["end_index"]),
        expected_entry=float(data["expected_entry"]),
        expected_exit=float(data["expected_exit"]),
        stop_loss=float(data["stop_loss"]),
        metadata=PatternMetadata(
            quality=int(meta["quality"]),
            description=meta["description"],
            hint=meta.get("hint", ""),
            side=TradeSide(meta.get("side", "long")),
            breakout_index=meta.get("breakout_index"),
        ),
    )


def _position_to_dict(position: Position) -> Dict[str, Any]:
    return {
        "id": position.id,
        "side": position.side.value,
        "entry_price": position.entry_price,
        "entry_time": position.entry_time,
        "entry_index": position.entry_index,
        "quantity": position.quantity,
        "current_pnl": position.current_pnl,
        "current_pnl_percent": position.current_pnl_percent,
        "stop_loss": position.stop_loss,
        "take_profit": position.take_profit,
        "pattern_entry": _pattern_entry_to_dict(position.pattern_entry),
    }


def _position_from_dict(data: Dict[str, Any]) -> Position:
    return Position(
        id=data["id"],
        side=TradeSide(data["side"]),
        entry_price=float(data["entry_price"]),
        entry_time=int(data["entry_time"]),
        entry_index=int(data["entry_index"]),
        quantity=float(data["quantity"]),
        current_pnl=float(data.get("current_pnl", 0.0)),
        current_pnl_percent=float(data.get("current_pnl_percent", 0.0)),
        stop_loss=data.get("stop_loss"),
        take_profit=data.get("take_profit"),
        pattern_entry=_pattern_entry_from_dict(data.get("pattern_entry")),
    )


def _closed_to_dict(closed: ClosedPosition) -> Dict[str, Any]:
    return {
        "id": closed.id,
        "side": closed.side.value,
        "entry_price": closed.entry_price,
        "entry_time": closed.entry_time,
        "entry_index": closed.entry_index,
        "quantity": closed.quantity,
        "exit_price": closed.exit_price,
        "exit_time": closed.exit_time,
        "exit_index": closed.exit_index,
        "exit_pnl": closed.exit_pnl,
        "exit_pnl_percent": closed.exit_pnl_percent,
        "exit_reason": closed.exit_reason.value,
        "stop_loss": closed.stop_loss,
        "take_profit": closed.take_profit,
        "pattern_entry": _pattern_entry_to_dict(closed.pattern_entry),
    }


def _closed_from_dict(data: Dict[str, Any]) -> ClosedPosition:
    return ClosedPosition(
        id=data["id"],
        side=TradeSide(data["side"]),
        entry_price=float(data["entry_price"]),
        entry_time=int(data["entry_time"]),
        entry_index=int(data["entry_index"]),
        quantity=float(data["quantity"]),
        exit_price=float(data["exit_price"]),
        exit_time=int(data["exit_time"]),
        exit_index=int(data["exit_index"]),
        exit_pnl=float(data["exit_pnl"]),
        exit_pnl_percent=float(data["exit_pnl_percent"]),
        exit_reason=ExitReason(data["exit_reason"]),
        stop_loss=data.get("stop_loss"),
        take_profit=data.get("take_profit"),
        pattern_entry=_pattern_entry_from_dict(data.get("pattern_entry")),
    )


def _order_to_dict(order: PendingOrder) -> Dict[str, Any]:
    return {
        "id": order.id,
        "side": order.side.value,
        "order_type": order.order_type.value,
        "target_price": order.target_price,
        "quantity": order.quantity,
        "stop_loss": order.stop_loss,
        "take_profit": order.take_profit,
        "created_at_index": order.created_at_index,
    }


def _order_from_dict(data: Dict[str, Any]) -> PendingOrder:
    return PendingOrder(
        id=data["id"],
        side=TradeSide(data["side"]),
        order_type=PendingOrderType(data["order_type"]),
        target_price=float(data["target_price"]),
        quantity=float(data["quantity"]),
        stop_loss=data.get("stop_loss"),
        take_profit=data.get("take_profit"),
        created_at_index=int(data.get("created_at_index", 0)),
    )


def _stats_to_dict(stats: GameStats) -> Dict[str, Any]:
    data = {
        name: getattr(stats, name)
        for name in GameStats.__dataclass_fields__
        if name not in ("best_trade", "worst_trade")
    }
    data["best_trade"] = _trade_summary_to_dict(stats.best_trade)
    data["worst_trade"] = _trade_summary_to_dict(stats.worst_trade)
    return data


def _stats_from_dict(data: Dict[str, Any]) -> GameStats:
    values = {k: v for k, v in data.items() if k not in ("best_trade", "worst_trade")}
    return GameStats(
        **values,
        best_trade=_trade_summary_from_dict(data.get("best_trade")),
        worst_trade=_trade_summary_from_dict(data.get("worst_trade")),
    )


def snapshot_to_dict(state: GameState) -> Dict[str, Any]:
    """將 GameState 轉為可 JSON 序列化的字典"""
    account = state.account
    return {
        "version": SNAPSHOT_VERSION,
        "id": state.id,
        "config": _config_manager.to_dict(state.config),
        "current_index": state.current_index,
        "is_complete": state.is_complete,
        "candles": [
            [c.time, c.open, c.high, c.low, c.close, c.volume] for c in state.candles
        ],
        "patterns": [pattern_to_dict(p) for p in state.patterns],
        "account": {
            "balance": account.balance,
            "equity": account.equity,
            "initial_balance": account.initial_balance,
            "realized_pnl": account.realized_pnl,
            "unrealized_pnl": account.unrealized_pnl,
        },
        "positions": [_position_to_dict(p) for p in state.positions],
        "closed_positions": [_closed_to_dict(c) for c in state.closed_positions],
        "pending_orders": [_order_to_dict(o) for o in state.pending_orders],
        "stats": _stats_to_dict(state.stats),
        "feedback": [
            {"type": f.type.value, "message": f.message, "timestamp": f.timestamp, "data": f.data}
            for f in state.feedback
        ],
        "hinted_patterns": sorted(state.hinted_patterns),
    }


def snapshot_from_dict(data: Dict[str, Any]) -> GameState:
    """從字典還原 GameState

    Raises:
        ValueError: 快照版本不支援
    """
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version}")

    return GameState(
        id=data["id"],
        candles=[
            Candle(int(t), float(o), float(h), float(lo), float(c), float(v))
            for t, o, h, lo, c, v in data["candles"]
        ],
        patterns=[pattern_from_dict(p) for p in data["patterns"]],
        current_index=int(data["current_index"]),
        account=Account(**data["account"]),
        config=_config_manager.from_dict(data["config"]),
        positions=[_position_from_dict(p) for p in data["positions"]],
        closed_positions=[_closed_from_dict(c) for c in data["closed_positions"]],
        pending_orders=[_order_from_dict(o) for o in data["pending_orders"]],
        stats=_stats_from_dict(data["stats"]),
        feedback=[
            Feedback(FeedbackType(f["type"]), f["message"], int(f["timestamp"]), dict(f.get("data", {})))
            for f in data["feedback"]
        ],
        is_complete=bool(data["is_complete"]),
        hinted_patterns=set(data.get("hinted_patterns", [])),
    )


def snapshot_to_json(state: GameState) -> str:
    return json.dumps(snapshot_to_dict(state), ensure_ascii=False)


def snapshot_from_json(json_str: str) -> GameState:
    return snapshot_from_dict(json.loads(json_str))
