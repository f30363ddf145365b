"""Simulation Service for Pattern Replay

This module provides the SimulationService class, the id-keyed facade a
transport layer calls. Calls for the same simulation id are serialized by a
per-id lock; calls for different ids run independently. States handed back
to callers are detached copies, so reading them never races a later call.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from pattern_replay.core.models import Candle, Pattern
from pattern_replay.db.state_store import GameStateStore, InMemoryGameStateStore
from pattern_replay.game.config import SimulationConfig, SimulationConfigManager
from pattern_replay.game.exceptions import NotFoundError
from pattern_replay.game.models import Account, ClosedPosition, GameState, PendingOrder, Position
from pattern_replay.game.replay_engine import OrderTypeLike, ReplayEngine, SideLike

logger = logging.getLogger(__name__)


def detach(state: GameState) -> GameState:
    """複製 GameState；唯讀的 K 線與型態列表共用不複製"""
    memo = {id(state.candles): state.candles, id(state.patterns): state.patterns}
    return copy.deepcopy(state, memo)


class SimulationService:
    """模擬服務

    負責從儲存載入模擬、呼叫回放引擎並存回。

    Attributes:
        store: 模擬狀態儲存
        engine: 回放引擎
        config_manager: 依資產解析預設設定的配置管理器
    """

    def __init__(
        self,
        store: Optional[GameStateStore] = None,
        engine: Optional[ReplayEngine] = None,
        config_manager: Optional[SimulationConfigManager] = None
    ):
        self.store = store or InMemoryGameStateStore()
        self.engine = engine or ReplayEngine()
        self.config_manager = config_manager or SimulationConfigManager()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, game_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(game_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[game_id] = lock
            return lock

    @contextmanager
    def _session(self, game_id: str) -> Iterator[GameState]:
        """持有該模擬的鎖並載入狀態，正常結束時存回"""
        with self._lock_for(game_id):
            state = self.store.get(game_id)
            if state is None:
                raise NotFoundError("game", game_id)
            yield state
            self.store.save(game_id, state)

    def create_simulation(
        self,
        candles: Sequence[Candle],
        config: Optional[SimulationConfig] = None,
        asset: Optional[str] = None,
        patterns: Optional[List[Pattern]] = None
    ) -> GameState:
        """建立並儲存新的模擬

        Args:
            candles: K 線序列
            config: 模擬設定，None 則依 asset 由配置管理器解析
            asset: 資產代碼
            patterns: 預先排程的型態
        """
        if config is None:
            config = self.config_manager.get_config(asset)
        state = self.engine.create_simulation(candles, config, patterns)
        with self._lock_for(state.id):
            self.store.save(state.id, state)
            return detach(state)

    def get_simulation(self, game_id: str) -> GameState:
        with self._lock_for(game_id):
            state = self.store.get(game_id)
            if state is None:
                raise NotFoundError("game", game_id)
            return detach(state)

    def delete_simulation(self, game_id: str) -> None:
        with self._lock_for(game_id):
            if not self.store.delete(game_id):
                raise NotFoundError("game", game_id)
        with self._locks_guard:
            self._locks.pop(game_id, None)
        logger.info(f"Deleted simulation {game_id}")

    def list_simulations(self) -> List[str]:
        return self.store.list_ids()

    def advance_candle(self, game_id: str) -> GameState:
        with self._session(game_id) as state:
            return detach(self.engine.advance_candle(state))

    def open_position(
        self,
        game_id: str,
        side: SideLike,
        quantity: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None
    ) -> Tuple[Position, Account]:
        with self._session(game_id) as state:
            return self.engine.open_position(state, side, quantity, stop_loss, take_profit)

    def close_position(self, game_id: str, position_id: str) -> Tuple[ClosedPosition, Account]:
        with self._session(game_id) as state:
            return self.engine.close_position(state, position_id)

    def place_pending_order(
        self,
        game_id: str,
        side: SideLike,
        target_price: float,
        quantity: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        order_type: Optional[OrderTypeLike] = None
    ) -> PendingOrder:
        with self._session(game_id) as state:
            return self.engine.place_pending_order(
                state, side, target_price, quantity, stop_loss, take_profit, order_type
            )

    def cancel_pending_order(self, game_id: str, order_id: str) -> None:
        with self._session(game_id) as state:
            self.engine.cancel_pending_order(state, order_id)

    def edit_position(self, game_id: str, position_id: str, updates: Mapping[str, Any]) -> Position:
        with self._session(game_id) as state:
            return self.engine.edit_position(state, position_id, updates)

    def edit_pending_order(self, game_id: str, order_id: str, updates: Mapping[str, Any]) -> PendingOrder:
        with self._session(game_id) as state:
            return self.engine.edit_pending_order(state, order_id, updates)

    def detect_patterns(
        self,
        candles: Sequence[Candle],
        target_count: int = 8,
        asset: Optional[str] = None
    ) -> List[Pattern]:
        config = self.config_manager.get_config(asset)
        return self.engine.detect_patterns(candles, target_count, config.detector)
