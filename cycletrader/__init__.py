"""
Cycle trading system modules.

Provides unified interfaces for:
- Candle loading (CSV/JSON files, exchange kline arrays)
- Indicator calculations (RSI, Stochastic, ATR, SMA, EMA, cycle momentum)
- Cycle detection (swing pivots, duration bounds, confirmation filters)
- Position management and walk-forward simulation
- Grid search over detection and risk parameters
- Live execution against a futures exchange
"""
