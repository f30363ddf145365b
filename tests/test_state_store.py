"""Tests for the in-memory state store and snapshot serialization"""

import json

import pytest

from pattern_replay.core.models import Candle
from pattern_replay.db import (
    SNAPSHOT_VERSION,
    InMemoryGameStateStore,
    snapshot_from_dict,
    snapshot_from_json,
    snapshot_to_dict,
    snapshot_to_json,
)
from pattern_replay.game import ReplayEngine, SimulationConfig


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def small_state(game_id="game-1"):
    candles = [Candle(1_700_000_000 + i * 3600, c, c + 1, c - 1, c, 10.0)
               for i, c in enumerate([100.0, 102.0, 101.0, 99.0, 103.0])]
    config = SimulationConfig(start_index=0, min_candles=2, target_pattern_count=0, asset="BTCUSDT")
    return ReplayEngine().create_simulation(candles, config, patterns=[], game_id=game_id)


class TestInMemoryGameStateStore:
    """Test TTL and LRU eviction"""

    def test_save_and_get(self):
        """Test a saved state can be loaded by id"""
        store = InMemoryGameStateStore()
        state = small_state()
        store.save(state.id, state)
        assert store.get(state.id) is state
        assert store.get("missing") is None
        assert store.list_ids() == [state.id]

    def test_ttl_expiry(self):
        """Test entries expire after ttl_seconds without access"""
        clock = FakeClock()
        store = InMemoryGameStateStore(ttl_seconds=60, clock=clock)
        store.save("a", small_state("a"))

        clock.now = 59
        assert store.get("a") is not None
        clock.now = 118
        assert store.get("a") is not None
        clock.now = 178
        assert store.get("a") is None
        assert len(store) == 0

    def test_no_ttl(self):
        """Test ttl_seconds=None disables expiry"""
        clock = FakeClock()
        store = InMemoryGameStateStore(ttl_seconds=None, clock=clock)
        store.save("a", small_state("a"))
        clock.now = 10 ** 9
        assert store.get("a") is not None

    def test_lru_eviction(self):
        """Test the least recently used entry is evicted on overflow"""
        store = InMemoryGameStateStore(max_entries=2, clock=FakeClock())
        store.save("a", small_state("a"))
        store.save("b", small_state("b"))
        store.get("a")
        store.save("c", small_state("c"))
        assert store.list_ids() == ["a", "c"]
        assert store.stats()["entries"] == 2

    def test_delete(self):
        """Test delete reports whether the id existed"""
        store = InMemoryGameStateStore()
        store.save("a", small_state("a"))
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    @pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"max_entries": 0}])
    def test_invalid_arguments(self, kwargs):
        """Test invalid limits are rejected"""
        with pytest.raises(ValueError):
            InMemoryGameStateStore(**kwargs)


class TestSnapshot:
    """Test snapshot serialization"""

    def test_round_trip_with_activity(self):
        """Test a traded simulation restores to an equal state"""
        engine = ReplayEngine()
        state = small_state()
        position, _ = engine.open_position(state, "long", 2, stop_loss=95.0, take_profit=104.0)
        engine.place_pending_order(state, "short", 100.5, 1, stop_loss=106.0)
        engine.advance_candle(state)
        engine.close_position(state, position.id)
        engine.advance_candle(state)

        restored = snapshot_from_json(snapshot_to_json(state))
        assert restored == state
        assert restored.config.asset == "BTCUSDT"

    def test_version_is_checked(self):
        """Test unknown snapshot versions are rejected"""
        data = snapshot_to_dict(small_state())
        assert data["version"] == SNAPSHOT_VERSION
        data["version"] = SNAPSHOT_VERSION + 1
        with pytest.raises(ValueError):
            snapshot_from_dict(data)

    def test_json_compatible(self):
        """Test the snapshot dictionary is plain JSON"""
        data = snapshot_to_dict(small_state())
        assert json.loads(json.dumps(data)) == data
