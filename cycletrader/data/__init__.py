"""
Data loading module.

Provides candle loading from CSV/JSON files and exchange kline arrays.
"""
from .loader import (
    CandleLoader,
    OHLCV_COLUMNS,
    candles_from_klines,
    candles_from_records,
    load_candles,
    save_candles,
)

__all__ = [
    'CandleLoader',
    'OHLCV_COLUMNS',
    'candles_from_klines',
    'candles_from_records',
    'load_candles',
    'save_candles',
]
