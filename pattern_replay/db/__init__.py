"""Storage layer for Pattern Replay

This module provides the simulation store and snapshot serialization.
"""

from pattern_replay.db.state_store import GameStateStore, InMemoryGameStateStore
from pattern_replay.db.snapshot import (
    SNAPSHOT_VERSION,
    pattern_from_dict,
    pattern_to_dict,
    snapshot_from_dict,
    snapshot_from_json,
    snapshot_to_dict,
    snapshot_to_json,
)

__all__ = [
    "GameStateStore",
    "InMemoryGameStateStore",
    "SNAPSHOT_VERSION",
    "pattern_from_dict",
    "pattern_to_dict",
    "snapshot_from_dict",
    "snapshot_from_json",
    "snapshot_to_dict",
    "snapshot_to_json",
]
