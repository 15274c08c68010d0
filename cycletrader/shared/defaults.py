"""
Centralized default values for detection, risk and live parameters.

This is the SINGLE SOURCE OF TRUTH for all parameter defaults.
All modules should import from here to ensure consistency.

Values were tuned on hourly perpetual-futures data (SUIUSDT, 2025):
- Duration range 13-33 bars: best combined PnL across both directions
- 2-bar entry confirmation: removes most single-candle fake-outs
- Dynamic ATR exits (2.0/3.0): steadier than cycle-extreme stops in chop
"""

# RSI (Relative Strength Index) defaults
RSI_PERIOD = 14  # Wilder default
RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70

# Stochastic oscillator defaults
STOCH_K_PERIOD = 14
STOCH_D_PERIOD = 3
STOCH_OVERSOLD = 30
STOCH_OVERBOUGHT = 70

# Volatility / volume / trend
ATR_PERIOD = 14
VOLUME_SMA_PERIOD = 20
EMA_FAST_PERIOD = 21  # Trend filter fast EMA
EMA_SLOW_PERIOD = 80  # Trend filter slow EMA
MOMENTUM_CYCLE_LENGTH = 50  # Window of the cycle swing momentum processor
MOMENTUM_FAST_CYCLES = 1  # Fast thrust cycle count
MOMENTUM_SLOW_CYCLES = 10  # Slow thrust cycle count

# Cycle detection defaults
MIN_DURATION = 13  # Bars between start and end pivot (inclusive bound)
MAX_DURATION = 33
SWING_STRENGTH = 1  # Neighbours on each side of a start pivot (1-3)
END_SWING_STRENGTH = 1  # Neighbours on each side of an end pivot
PREFER_SHORTEST = True  # Accept start + min_duration immediately when valid
PIVOT_BODY_RATIO = 0.30  # Minimum body/range of the confirming opposite-colour candle
PIVOT_MIN_CONFIRM_BARS = 3  # Confirmation window = max(this, strength + 1)

# Position state machine defaults
STARTING_BALANCE = 1000.0
LEVERAGE = 20
CAPITAL_PERCENTAGE = 30.0  # % of balance committed per trade (before leverage)
FEES_ENABLED = True
TAKER_FEE_PERCENT = 0.02  # Per side, charged on notional at entry and exit
TP1_AVG_PERCENT = 30.0  # TP1 = % of the trailing average cycle move
TP1_CLOSE_FRACTION = 0.6  # Fraction of the position closed at TP1
TP2_AVG_PERCENT = 150.0
CONFIRMATION_BARS = 2  # Consecutive favourable closes before a pending entry fires
MAX_LOSS_PERCENT = 5.0  # % of starting balance
VOLUME_FACTOR = 1.2  # Volume must exceed SMA20 x factor when the filter is on
TRAILING_ACTIVATION_PERCENT = 3.2
TRAILING_CALLBACK_PERCENT = 0.8
DYNAMIC_SL_MULTIPLIER = 2.0  # ATR multiples
DYNAMIC_TP_MULTIPLIER = 3.0  # TP2 sits at twice this distance
LIQUIDATION_GUARD = 0.9  # Refuse entries whose leveraged stop distance reaches 90%
COUNTER_TREND_SIZE_FACTOR = 0.5
AVG_MOVE_LOOKBACK_CYCLES = 10

# Live execution defaults
LIVE_SYMBOL = "SUIUSDT"
LIVE_INTERVAL = "1h"
CANDLE_LIMIT = 1000
LOOP_INTERVAL_SECONDS = 60
SIGNAL_FRESHNESS_BARS = 3  # Cycle end must lie within the last N closed candles
QUANTITY_PRECISION = 1  # Decimal places of order quantities (floored)
OPTIMIZE_INTERVAL_HOURS = 32  # Live range re-optimization cadence (0 = off)
MIN_HISTORY_BUFFER = 50  # Extra candles beyond max_duration before trading
RECV_WINDOW_MS = 5000
REQUEST_TIMEOUT_SECONDS = 10
MAX_REQUEST_RETRIES = 3

# Grid search defaults
GRID_MIN_RANGE = 5
GRID_MAX_RANGE = 55
GRID_STEP = 2
GRID_MIN_GAP = 3  # max_duration must exceed min_duration + gap
MIN_TRADES_FOR_RANKING = 3
