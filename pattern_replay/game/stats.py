"""Statistics Aggregator for Pattern Replay

This module implements the StatisticsAggregator class, which derives win
rate, profit factor, streaks, drawdown and per-trade Sharpe/Sortino/Calmar
ratios after every position closure.
"""

from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from .models import ClosedPosition, GameStats, TradeSummary

RATIO_EPSILON = 1e-12


class StatisticsAggregator:
    """交易統計彙總器

    每次平倉後呼叫，返回新的 GameStats 而不修改傳入的物件。
    平均獲利與平均虧損以加權移動平均累計，不從頭重算。
    比率以單筆交易報酬百分比計算，未做時間年化。

    Attributes:
        min_returns_for_ratios: 計算比率所需的最少平倉數 (預設 2)
    """

    def __init__(self, min_returns_for_ratios: int = 2):
        if min_returns_for_ratios < 2:
            raise ValueError("min_returns_for_ratios must be at least 2")
        self.min_returns_for_ratios = min_returns_for_ratios

    def record_closure(
        self,
        stats: GameStats,
        closed: ClosedPosition,
        history: Sequence[ClosedPosition],
        equity: float,
        initial_balance: float
    ) -> GameStats:
        """納入一筆平倉並更新所有統計

        Args:
            stats: 目前統計
            closed: 剛平倉的紀錄
            history: 包含 closed 在內的全部平倉紀錄
            equity: 平倉後的帳戶淨值
            initial_balance: 初始資金

        Returns:
            更新後的統計
        """
        pnl = closed.exit_pnl
        winning = stats.winning_trades
        losing = stats.losing_trades
        average_win = stats.average_win
        average_loss = stats.average_loss

        if closed.is_win:
            winning += 1
            average_win = (average_win * (winning - 1) + pnl) / winning
        else:
            losing += 1
            average_loss = (average_loss * (losing - 1) + abs(pnl)) / losing

        total = stats.total_trades
        win_rate = winning / total * 100 if total > 0 else 0.0
        profit_factor = average_win / average_loss if average_loss > 0 else 0.0

        current_streak, max_win_streak, max_loss_streak = self._update_streaks(stats, closed.is_win)

        peak_equity = max(stats.peak_equity, equity)
        max_drawdown = max(stats.max_drawdown, peak_equity - equity)
        max_drawdown_percent = max_drawdown / initial_balance * 100 if initial_balance > 0 else 0.0

        sharpe, sortino, calmar = self._ratios(history, equity, initial_balance, max_drawdown_percent)

        qualities = [c.pattern_entry.entry_quality for c in history if c.pattern_entry is not None]
        average_entry_quality = float(np.mean(qualities)) if qualities else 0.0
        pattern_recognition_score = len(qualities) / len(history) * 100 if history else 0.0

        summary = TradeSummary(
            position_id=closed.id,
            pnl=pnl,
            pnl_percent=closed.exit_pnl_percent,
            pattern_type=closed.pattern_entry.pattern_type if closed.pattern_entry else None,
        )

        return replace(
            stats,
            winning_trades=winning,
            losing_trades=losing,
            win_rate=win_rate,
            average_win=average_win,
            average_loss=average_loss,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
            max_drawdown_percent=max_drawdown_percent,
            sharpe_ratio=sharpe,
            sortino_ratio=sortino,
            calmar_ratio=calmar,
            pattern_recognition_score=pattern_recognition_score,
            average_entry_quality=average_entry_quality,
            current_streak=current_streak,
            max_win_streak=max_win_streak,
            max_loss_streak=max_loss_streak,
            peak_equity=peak_equity,
            best_trade=self._better(stats.best_trade, summary, prefer_higher=True),
            worst_trade=self._better(stats.worst_trade, summary, prefer_higher=False),
        )

    @staticmethod
    def _update_streaks(stats: GameStats, is_win: bool):
        streak = stats.current_streak
        if is_win:
            streak = streak + 1 if streak > 0 else 1
        else:
            streak = streak - 1 if streak < 0 else -1

        max_win = max(stats.max_win_streak, streak)
        max_loss = max(stats.max_loss_streak, -streak)
        return streak, max_win, max_loss

    def _ratios(
        self,
        history: Sequence[ClosedPosition],
        equity: float,
        initial_balance: float,
        max_drawdown_percent: float
    ):
        """計算 Sharpe / Sortino / Calmar，資料不足時皆為 0"""
        if len(history) < self.min_returns_for_ratios:
            return 0.0, 0.0, 0.0

        returns = np.array([c.exit_pnl_percent for c in history], dtype=float)
        mean = float(np.mean(returns))

        # Identical returns leave rounding noise in the deviations; treat it as zero
        std = float(np.std(returns))
        sharpe = 0.0 if np.isclose(std, 0.0, atol=RATIO_EPSILON) else mean / std

        downside = returns[returns < mean]
        downside_dev = float(np.sqrt(np.mean((downside - mean) ** 2))) if downside.size else 0.0
        sortino = 0.0 if np.isclose(downside_dev, 0.0, atol=RATIO_EPSILON) else mean / downside_dev

        total_return_percent = (equity - initial_balance) / initial_balance * 100 if initial_balance > 0 else 0.0
        calmar = total_return_percent / max_drawdown_percent if max_drawdown_percent > 0 else 0.0

        return sharpe, sortino, calmar

    @staticmethod
    def _better(
        current: Optional[TradeSummary],
        candidate: TradeSummary,
        prefer_higher: bool
    ) -> TradeSummary:
        if current is None:
            return candidate
        if prefer_higher:
            return candidate if candidate.pnl > current.pnl else current
        return candidate if candidate.pnl < current.pnl else current
