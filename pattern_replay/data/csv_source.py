"""CSV Candle Source - CSV K 線數據源

This module loads candle series from TradingView, Binance or generic OHLCV
CSV exports using pandas. Timestamps may be unix seconds, unix
milliseconds or ISO dates; invalid rows are skipped, and the result is
sorted by time with duplicate times dropped.
"""

import io
import logging
import re
from typing import IO, List, Optional, Union

import pandas as pd

from pattern_replay.core.models import Candle
from pattern_replay.data.data_source import CandleSource
from pattern_replay.game.exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

TIME_COLUMNS = ("time", "timestamp", "open_time", "date")
VOLUME_COLUMNS = ("volume", "vol")
PRICE_COLUMNS = ("open", "high", "low", "close")

_UNIX_TIMESTAMP = re.compile(r"^\d{9,13}$")
_MAX_UNIX_SECONDS = 9_999_999_999


def parse_timestamp(value) -> Optional[int]:
    """將時間欄位轉為 Unix 秒

    9-13 位數字視為 Unix 時間戳，超過 10 位數者視為毫秒；
    其他字串以 ISO 日期解析（無時區者視為 UTC）。無法解析時返回 None。
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "nan":
        return None

    if _UNIX_TIMESTAMP.match(text):
        number = int(text)
        return number // 1000 if number > _MAX_UNIX_SECONDS else number

    parsed = pd.to_datetime(text, utc=True, errors="coerce")
    if pd.isna(parsed):
        return None
    return int(parsed.timestamp())


class CsvCandleSource(CandleSource):
    """CSV K 線數據源

    Attributes:
        source: 檔案路徑或文字串流
    """

    def __init__(self, source: Union[str, IO[str]]):
        self.source = source

    @classmethod
    def from_text(cls, content: str) -> "CsvCandleSource":
        return cls(io.StringIO(content))

    def _describe(self) -> str:
        return self.source if isinstance(self.source, str) else "<stream>"

    def _read_frame(self) -> pd.DataFrame:
        try:
            return pd.read_csv(self.source, dtype=str, skipinitialspace=True)
        except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse CSV {self._describe()}: {e}")
            raise InvalidParameterError("csv", self._describe(), f"unreadable CSV: {e}") from e

    def load(self) -> List[Candle]:
        """讀取並清理 CSV

        Returns:
            依時間排序且去除重複時間的 K 線列表

        Raises:
            InvalidParameterError: 檔案無法解析或缺少必要欄位
        """
        frame = self._read_frame()
        columns = {str(c).strip().lower(): c for c in frame.columns}

        missing = [name for name in PRICE_COLUMNS if name not in columns]
        if missing:
            logger.error(f"CSV {self._describe()} is missing columns: {missing}")
            raise InvalidParameterError(
                "csv", self._describe(),
                f"missing columns {', '.join(missing)}; expected time/timestamp, open, high, low, close, volume",
            )

        # Fall back to the first column when no time header is present
        time_column = next((columns[c] for c in TIME_COLUMNS if c in columns), frame.columns[0])
        volume_column = next((columns[c] for c in VOLUME_COLUMNS if c in columns), None)

        data = pd.DataFrame({
            "time": frame[time_column].map(parse_timestamp),
            "open": pd.to_numeric(frame[columns["open"]], errors="coerce"),
            "high": pd.to_numeric(frame[columns["high"]], errors="coerce"),
            "low": pd.to_numeric(frame[columns["low"]], errors="coerce"),
            "close": pd.to_numeric(frame[columns["close"]], errors="coerce"),
        })
        if volume_column is not None:
            data["volume"] = pd.to_numeric(frame[volume_column], errors="coerce").fillna(0.0).clip(lower=0.0)
        else:
            data["volume"] = 0.0

        valid = (
            data["time"].notna()
            & data[list(PRICE_COLUMNS)].notna().all(axis=1)
            & (data[list(PRICE_COLUMNS)] > 0).all(axis=1)
            & (data["high"] >= data["low"])
            & (data["high"] >= data[["open", "close"]].max(axis=1))
            & (data["low"] <= data[["open", "close"]].min(axis=1))
        )
        skipped = int((~valid).sum())
        if skipped:
            logger.warning(f"Skipped {skipped} invalid rows in {self._describe()}")

        data = data[valid].copy()
        data["time"] = data["time"].astype("int64")
        data = data.sort_values("time", kind="stable").drop_duplicates(subset="time", keep="first")

        candles = [
            Candle(
                time=int(row.time),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in data.itertuples(index=False)
        ]

        logger.info(f"Loaded {len(candles)} candles from {self._describe()}")
        return candles
