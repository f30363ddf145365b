#!/usr/bin/env python
"""Pattern Replay 啟動程式

載入 CSV 或隨機生成的 K 線，檢測型態，並可選擇自動回放一次依提示交易的模擬。

Usage:
    python run.py --csv data/btc_1h.csv --replay
    python run.py --synthetic 600 --seed 7 --detectors breakout,flag
"""

import argparse
import logging
import sys
from typing import List, Optional

from pattern_replay.core.config import DetectorConfig, DetectorQuota
from pattern_replay.core.models import Pattern, TradeSide
from pattern_replay.data import CsvCandleSource, SyntheticCandleSource
from pattern_replay.db import snapshot_to_json
from pattern_replay.game import (
    GameState,
    ReplayEngine,
    ReplayError,
    SimulationConfig,
    SimulationConfigManager,
)

logger = logging.getLogger("pattern_replay.run")

DETECTOR_NAMES = ("strict_retest", "breakout", "retest", "flag", "consolidation_breakout")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pattern Replay - 型態檢測與K線回放模擬")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", help="OHLCV CSV 檔案路徑")
    source.add_argument("--synthetic", type=int, default=500, help="隨機生成的K線數 (預設 500)")
    parser.add_argument("--seed", type=int, default=None, help="隨機種子")
    parser.add_argument("--config", help="SimulationConfig JSON 檔案")
    parser.add_argument("--balance", type=float, default=None, help="初始資金")
    parser.add_argument("--target-count", type=int, default=None, help="目標型態數量")
    parser.add_argument(
        "--detectors",
        default=None,
        help=f"啟用的檢測器，以逗號分隔 ({', '.join(DETECTOR_NAMES)})",
    )
    parser.add_argument("--replay", action="store_true", help="自動回放並依型態提示交易")
    parser.add_argument("--risk", type=float, default=0.1, help="每筆交易使用的資金比例 (預設 0.1)")
    parser.add_argument("--snapshot", help="回放後將狀態快照寫入此 JSON 檔案")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日誌等級 (預設 INFO)",
    )
    return parser


def select_detectors(base: DetectorConfig, names: str) -> DetectorConfig:
    """依名稱列表啟用檢測器，其餘停用，配額比例沿用原設定"""
    selected = [n.strip() for n in names.split(",") if n.strip()]
    unknown = [n for n in selected if n not in DETECTOR_NAMES]
    if unknown:
        raise ValueError(f"Unknown detectors: {', '.join(unknown)}")

    quotas = {
        name: DetectorQuota(name in selected, getattr(base, name).share)
        for name in DETECTOR_NAMES
    }
    return DetectorConfig(
        margin=base.margin,
        min_gap=base.min_gap,
        min_quality=base.min_quality,
        strict_retest_options=base.strict_retest_options,
        consolidation_options=base.consolidation_options,
        **quotas,
    )


def load_config(args: argparse.Namespace) -> SimulationConfig:
    manager = SimulationConfigManager()
    if args.config:
        with open(args.config, encoding="utf-8") as f:
            data = manager.to_dict(manager.from_json(f.read()))
    else:
        data = manager.to_dict(manager.get_default_config())

    if args.balance is not None:
        data["initial_balance"] = args.balance
    if args.target_count is not None:
        data["target_pattern_count"] = args.target_count

    config = manager.from_dict(data)
    if args.detectors:
        config.detector = select_detectors(config.detector, args.detectors)
    return config


def print_patterns(patterns: List[Pattern]) -> None:
    print(f"Detected {len(patterns)} patterns")
    for p in patterns:
        print(
            f"  [{p.start_index:>5}-{p.end_index:<5}] {p.type.value:<8} "
            f"{p.metadata.side.value:<5} q={p.quality:<3} "
            f"entry={p.expected_entry:.2f} exit={p.expected_exit:.2f} sl={p.stop_loss:.2f}"
        )


def auto_replay(engine: ReplayEngine, state: GameState, risk: float) -> GameState:
    """依型態起點自動開倉，以型態的止損與目標價作為 SL/TP"""
    starts = {p.start_index: p for p in state.patterns}

    while not state.is_complete:
        pattern = starts.get(state.current_index)
        if pattern is not None and not state.positions:
            price = state.current_candle.close
            side = pattern.metadata.side
            is_long = side == TradeSide.LONG
            if is_long:
                stop_loss = pattern.stop_loss if pattern.stop_loss < price else None
                take_profit = pattern.expected_exit if pattern.expected_exit > price else None
            else:
                stop_loss = pattern.stop_loss if pattern.stop_loss > price else None
                take_profit = pattern.expected_exit if pattern.expected_exit < price else None
            quantity = state.account.balance * risk / price
            if quantity > 0:
                engine.open_position(state, side, quantity, stop_loss, take_profit)
        engine.advance_candle(state)

    for position in list(state.positions):
        engine.close_position(state, position.id)
    return state


def print_summary(state: GameState) -> None:
    account = state.account
    stats = state.stats
    print("Replay summary")
    print(f"  Equity:        {account.equity:.2f} (initial {account.initial_balance:.2f})")
    print(f"  Realized PnL:  {account.realized_pnl:+.2f}")
    print(f"  Trades:        {stats.total_trades} (win rate {stats.win_rate:.1f}%)")
    print(f"  Profit factor: {stats.profit_factor:.2f}")
    print(f"  Max drawdown:  {stats.max_drawdown:.2f} ({stats.max_drawdown_percent:.2f}%)")
    print(f"  Sharpe/Sortino/Calmar: {stats.sharpe_ratio:.2f} / {stats.sortino_ratio:.2f} / {stats.calmar_ratio:.2f}")


def main(argv: Optional[List[str]] = None) -> int:
    """執行 Pattern Replay 命令列程式，返回結束代碼"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
        if args.csv:
            candles = CsvCandleSource(args.csv).load()
        else:
            candles = SyntheticCandleSource(count=args.synthetic, seed=args.seed).load()

        engine = ReplayEngine()
        state = engine.create_simulation(candles, config)
        print_patterns(state.patterns)

        if args.replay:
            auto_replay(engine, state, args.risk)
            print_summary(state)

        if args.snapshot:
            with open(args.snapshot, "w", encoding="utf-8") as f:
                f.write(snapshot_to_json(state))
            logger.info(f"Snapshot written to {args.snapshot}")
    except (ReplayError, ValueError, OSError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
