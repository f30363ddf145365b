"""Game State Store for Pattern Replay

This module provides the repository interface through which the service
loads and saves simulations by id, and the in-memory backend with TTL and
least-recently-used eviction.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from pattern_replay.game.models import GameState

logger = logging.getLogger(__name__)


class GameStateStore(ABC):
    """模擬狀態儲存介面"""

    @abstractmethod
    def get(self, game_id: str) -> Optional[GameState]:
        """讀取模擬，不存在或已過期時返回 None"""
        pass

    @abstractmethod
    def save(self, game_id: str, state: GameState) -> None:
        """儲存（或覆蓋）模擬"""
        pass

    @abstractmethod
    def delete(self, game_id: str) -> bool:
        """刪除模擬，返回是否存在"""
        pass

    @abstractmethod
    def list_ids(self) -> List[str]:
        """列出所有有效的模擬識別碼"""
        pass


class InMemoryGameStateStore(GameStateStore):
    """記憶體模擬狀態儲存

    每次存取時清除逾時項目；超過容量時淘汰最久未使用的項目。

    Attributes:
        ttl_seconds: 項目最後存取後的存活秒數 (預設 3600)，None 表示不過期
        max_entries: 最大項目數 (預設 100)
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = 3600,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None")
        if max_entries < 1:
            raise ValueError("max_entries must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, GameState]]" = OrderedDict()
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        if self.ttl_seconds is None:
            return
        expired = [
            game_id for game_id, (touched, _) in self._entries.items()
            if now - touched >= self.ttl_seconds
        ]
        for game_id in expired:
            del self._entries[game_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired simulations")

    def get(self, game_id: str) -> Optional[GameState]:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            entry = self._entries.get(game_id)
            if entry is None:
                return None
            self._entries[game_id] = (now, entry[1])
            self._entries.move_to_end(game_id)
            return entry[1]

    def save(self, game_id: str, state: GameState) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[game_id] = (now, state)
            self._entries.move_to_end(game_id)

            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info(f"Evicted least recently used simulation {evicted}")

    def delete(self, game_id: str) -> bool:
        with self._lock:
            self._purge_expired(self._clock())
            return self._entries.pop(game_id, None) is not None

    def list_ids(self) -> List[str]:
        with self._lock:
            self._purge_expired(self._clock())
            return list(self._entries.keys())

    def stats(self) -> Dict[str, float]:
        """返回儲存狀態摘要"""
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds if self.ttl_seconds is not None else 0,
            }

    def __len__(self) -> int:
        return len(self.list_ids())
