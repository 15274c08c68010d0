"""
Candle loader for backtests and grid searches.

Loads OHLCV candles from:
- CSV files (time column or index + Open/High/Low/Close[/Volume])
- JSON files (list of records, or exchange kline arrays)
- In-memory kline arrays as returned by futures exchanges

Every loader returns a DataFrame with a UTC DatetimeIndex named "time" and
columns Open, High, Low, Close, Volume, in strictly increasing time order.
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

OHLCV_COLUMNS = ["Open", "High", "Low", "Close", "Volume"]

_COLUMN_ALIASES = {
    "open": "Open", "o": "Open",
    "high": "High", "h": "High",
    "low": "Low", "l": "Low",
    "close": "Close", "c": "Close",
    "volume": "Volume", "v": "Volume", "vol": "Volume",
}

_TIME_ALIASES = ("time", "timestamp", "open_time", "opentime", "date", "datetime", "t")


def _to_utc_index(values: Iterable[Any]) -> pd.DatetimeIndex:
    """Convert epoch milliseconds or date strings to a UTC DatetimeIndex."""
    series = pd.Series(list(values))
    if pd.api.types.is_numeric_dtype(series):
        index = pd.to_datetime(series.astype("int64"), unit="ms", utc=True)
    else:
        index = pd.to_datetime(series, utc=True)
    return pd.DatetimeIndex(index, name="time")


def _utc(value: Union[str, datetime, pd.Timestamp]) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def _finalize(df: pd.DataFrame) -> pd.DataFrame:
    missing = [c for c in OHLCV_COLUMNS[:4] if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data is missing columns: {missing}. Available: {list(df.columns)}")
    if "Volume" not in df.columns:
        df["Volume"] = 0.0
    df = df[OHLCV_COLUMNS].astype(float)
    if not df.index.is_monotonic_increasing or df.index.has_duplicates:
        raise ValueError("Candle times must be strictly increasing")
    return df


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename = {c: _COLUMN_ALIASES[c.lower()] for c in df.columns if c.lower() in _COLUMN_ALIASES}
    return df.rename(columns=rename)


def candles_from_records(records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    """
    Build a candle frame from dict records.

    Keys are matched case-insensitively (``time``/``timestamp``/``date`` and
    ``open``/``high``/``low``/``close``/``volume`` or their one-letter forms).
    """
    if len(records) == 0:
        raise ValueError("No candle records to load")
    df = _normalize_columns(pd.DataFrame(list(records)))
    time_col = next((c for c in df.columns if c.lower() in _TIME_ALIASES), None)
    if time_col is None:
        raise ValueError(f"Candle records have no time field. Available: {list(df.columns)}")
    df.index = _to_utc_index(df[time_col])
    return _finalize(df.drop(columns=[time_col]))


def candles_from_klines(klines: Sequence[Sequence[Any]]) -> pd.DataFrame:
    """
    Build a candle frame from exchange kline arrays.

    Each row is ``[open_time_ms, open, high, low, close, volume, ...]``; values
    may be strings, as exchanges send them.
    """
    if len(klines) == 0:
        raise ValueError("No klines to load")
    rows = [row[:6] for row in klines]
    df = pd.DataFrame(rows, columns=["time"] + OHLCV_COLUMNS)
    df.index = _to_utc_index(pd.to_numeric(df["time"]))
    df = df.drop(columns=["time"]).apply(pd.to_numeric)
    return _finalize(df)


class CandleLoader:
    """
    Loads candles from a CSV or JSON file.

    Supports optional time-range filtering.
    """

    def __init__(self, data_path: Union[str, Path]):
        """
        Initialize the loader.

        Args:
            data_path: Path to a .csv or .json candle file
        """
        self.data_path = Path(data_path)
        if not self.data_path.exists():
            raise FileNotFoundError(f"Data file not found: {self.data_path}")

    def _read(self) -> pd.DataFrame:
        suffix = self.data_path.suffix.lower()
        if suffix == ".json":
            with open(self.data_path, "r") as f:
                payload = json.load(f)
            if isinstance(payload, dict):
                payload = payload.get("candles", payload.get("data", []))
            if payload and isinstance(payload[0], (list, tuple)):
                return candles_from_klines(payload)
            return candles_from_records(payload)
        if suffix == ".csv":
            df = _normalize_columns(pd.read_csv(self.data_path))
            time_col = next((c for c in df.columns if c.lower() in _TIME_ALIASES), df.columns[0])
            df.index = _to_utc_index(df[time_col])
            return _finalize(df.drop(columns=[time_col]))
        raise ValueError(f"Unsupported candle file type '{suffix}' (expected .csv or .json)")

    def load(
        self,
        start: Optional[Union[str, datetime, pd.Timestamp]] = None,
        end: Optional[Union[str, datetime, pd.Timestamp]] = None,
    ) -> pd.DataFrame:
        """
        Load candles with optional filtering.

        Args:
            start: Start time (inclusive). If None, no start filter.
            end: End time (inclusive). If None, no end filter.

        Returns:
            DataFrame with UTC DatetimeIndex and OHLCV columns
        """
        df = self._read()
        if start is not None:
            df = df[df.index >= _utc(start)]
        if end is not None:
            df = df[df.index <= _utc(end)]
        return df


def load_candles(
    path: Union[str, Path],
    start: Optional[Union[str, datetime, pd.Timestamp]] = None,
    end: Optional[Union[str, datetime, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """Convenience wrapper: ``CandleLoader(path).load(start, end)``."""
    return CandleLoader(path).load(start=start, end=end)


def save_candles(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """
    Save a candle frame as CSV (time as ISO string) or JSON records (time as epoch ms).

    Returns:
        The written path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = df[[c for c in OHLCV_COLUMNS if c in df.columns]]
    if path.suffix.lower() == ".json":
        records: List[Dict[str, Any]] = []
        for ts, row in frame.iterrows():
            record = {"time": int(pd.Timestamp(ts).value // 1_000_000)}
            record.update({col.lower(): float(row[col]) for col in frame.columns})
            records.append(record)
        with open(path, "w") as f:
            json.dump(records, f, indent=2)
    else:
        out = frame.copy()
        out.index.name = "time"
        out.to_csv(path)
    return path
