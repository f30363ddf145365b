"""Data module - K 線數據層

This module provides the candle-series providers for Pattern Replay.
"""

from .data_source import CandleSource
from .csv_source import CsvCandleSource, parse_timestamp
from .synthetic_source import SyntheticCandleSource

__all__ = [
    'CandleSource',
    'CsvCandleSource',
    'SyntheticCandleSource',
    'parse_timestamp',
]
