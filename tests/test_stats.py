"""Unit tests for StatisticsAggregator"""

import numpy as np
import pytest

from pattern_replay.core.models import PatternType, TradeSide
from pattern_replay.game.models import ClosedPosition, ExitReason, GameStats, PatternEntry
from pattern_replay.game.stats import StatisticsAggregator


INITIAL = 10000.0


def closed_trade(number, pnl, pnl_percent=None, pattern_entry=None):
    return ClosedPosition(
        id=f"pos_{number}",
        side=TradeSide.LONG,
        entry_price=100.0,
        entry_time=0,
        entry_index=0,
        quantity=1.0,
        exit_price=100.0 + pnl,
        exit_time=3600,
        exit_index=1,
        exit_pnl=pnl,
        exit_pnl_percent=pnl if pnl_percent is None else pnl_percent,
        exit_reason=ExitReason.MANUAL,
        pattern_entry=pattern_entry,
    )


def replay_closures(pnls, equities=None, aggregator=None, **trade_kwargs):
    """依序納入多筆平倉，total_trades 與平倉數相同"""
    aggregator = aggregator or StatisticsAggregator()
    stats = GameStats(peak_equity=INITIAL)
    history = []
    equity = INITIAL
    for number, pnl in enumerate(pnls):
        trade = closed_trade(number, pnl, **trade_kwargs)
        history.append(trade)
        equity = equities[number] if equities else equity + pnl
        stats.total_trades += 1
        stats = aggregator.record_closure(stats, trade, history, equity, INITIAL)
    return stats


class TestCounts:
    """Test win/loss counts, averages and win rate"""

    def test_win_and_loss_averages(self):
        """Test the incremental averages match the plain averages"""
        stats = replay_closures([30.0, -10.0, 50.0, -30.0])
        assert stats.winning_trades == 2
        assert stats.losing_trades == 2
        assert stats.average_win == pytest.approx(40.0)
        assert stats.average_loss == pytest.approx(20.0)
        assert stats.profit_factor == pytest.approx(2.0)
        assert stats.win_rate == pytest.approx(50.0)

    def test_breakeven_counts_as_loss(self):
        """Test a zero-PnL closure is a loss"""
        stats = replay_closures([0.0])
        assert stats.losing_trades == 1
        assert stats.average_loss == 0.0
        assert stats.profit_factor == 0.0

    def test_input_not_mutated(self):
        """Test record_closure returns a new object"""
        stats = GameStats(total_trades=1, peak_equity=INITIAL)
        trade = closed_trade(0, 10.0)
        updated = StatisticsAggregator().record_closure(stats, trade, [trade], INITIAL + 10, INITIAL)
        assert updated is not stats
        assert stats.winning_trades == 0
        assert updated.winning_trades == 1


class TestStreaks:
    """Test streak tracking"""

    def test_flip_resets_streak(self):
        """Test a loss after wins resets the streak to -1"""
        stats = replay_closures([1.0, 2.0, -1.0])
        assert stats.current_streak == -1
        assert stats.max_win_streak == 2
        assert stats.max_loss_streak == 1

    def test_loss_streak(self):
        """Test consecutive losses extend the negative streak"""
        stats = replay_closures([1.0, -1.0, -2.0, -3.0, 4.0])
        assert stats.current_streak == 1
        assert stats.max_loss_streak == 3
        assert stats.max_win_streak == 1


class TestDrawdown:
    """Test peak equity and drawdown"""

    def test_drawdown_from_peak(self):
        """Test drawdown is measured from the running equity peak"""
        stats = replay_closures(
            [-100.0, 300.0, -200.0],
            equities=[9900.0, 10200.0, 10000.0],
        )
        assert stats.peak_equity == pytest.approx(10200.0)
        assert stats.max_drawdown == pytest.approx(200.0)
        assert stats.max_drawdown_percent == pytest.approx(2.0)


class TestRatios:
    """Test Sharpe, Sortino and Calmar"""

    def test_single_trade_has_no_ratios(self):
        """Test ratios stay zero below the minimum number of returns"""
        stats = replay_closures([5.0])
        assert stats.sharpe_ratio == 0.0
        assert stats.sortino_ratio == 0.0
        assert stats.calmar_ratio == 0.0

    def test_min_returns_validation(self):
        """Test the minimum number of returns must be at least 2"""
        with pytest.raises(ValueError):
            StatisticsAggregator(min_returns_for_ratios=1)

    def test_sharpe_matches_numpy(self):
        """Test Sharpe is mean over population standard deviation"""
        returns = [2.0, -1.0, 3.0]
        stats = replay_closures(returns)
        expected = np.mean(returns) / np.std(returns)
        assert stats.sharpe_ratio == pytest.approx(expected)

    def test_sortino_uses_below_mean_returns(self):
        """Test Sortino only counts returns below the mean"""
        returns = np.array([2.0, -1.0, 3.0])
        stats = replay_closures(list(returns))
        mean = returns.mean()
        downside = returns[returns < mean]
        expected = mean / np.sqrt(np.mean((downside - mean) ** 2))
        assert stats.sortino_ratio == pytest.approx(expected)

    def test_identical_returns(self):
        """Test zero dispersion yields zero Sharpe and Sortino"""
        stats = replay_closures([1.0, 1.0, 1.0])
        assert stats.sharpe_ratio == 0.0
        assert stats.sortino_ratio == 0.0

    @pytest.mark.parametrize("value", [0.1, 0.3, 1 / 3, -0.7])
    def test_identical_returns_with_rounding_noise(self, value):
        """Test identical returns whose float mean is inexact still give zero ratios"""
        stats = replay_closures([value] * 3)
        assert stats.sharpe_ratio == 0.0
        assert stats.sortino_ratio == 0.0

    def test_calmar(self):
        """Test Calmar is total return over max drawdown percent"""
        stats = replay_closures([-100.0, 300.0], equities=[9900.0, 10200.0])
        assert stats.max_drawdown_percent == pytest.approx(1.0)
        assert stats.calmar_ratio == pytest.approx(2.0)


class TestTradeQuality:
    """Test best/worst trades and pattern entry scores"""

    def test_best_and_worst(self):
        """Test the extreme trades are tracked"""
        stats = replay_closures([10.0, -40.0, 25.0, -5.0])
        assert stats.best_trade.position_id == "pos_2"
        assert stats.best_trade.pnl == pytest.approx(25.0)
        assert stats.worst_trade.position_id == "pos_1"
        assert stats.worst_trade.pnl == pytest.approx(-40.0)

    def test_pattern_scores(self):
        """Test recognition score and average entry quality"""
        aggregator = StatisticsAggregator()
        stats = GameStats(peak_equity=INITIAL)
        history = [
            closed_trade(0, 5.0, pattern_entry=PatternEntry(PatternType.FLAG, 80)),
            closed_trade(1, -5.0),
            closed_trade(2, 5.0, pattern_entry=PatternEntry(PatternType.BREAKOUT, 60)),
            closed_trade(3, 5.0),
        ]
        for number in range(len(history)):
            stats.total_trades += 1
            stats = aggregator.record_closure(stats, history[number], history[:number + 1], INITIAL, INITIAL)

        assert stats.pattern_recognition_score == pytest.approx(50.0)
        assert stats.average_entry_quality == pytest.approx(70.0)
        assert stats.best_trade.pattern_type == PatternType.FLAG
