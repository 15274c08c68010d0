"""
Strategy configuration for cycle detection, position management and live trading.

Contains the detector, bot and live configurations, the StrategyConfig that
bundles them and the named presets.
Config validation runs at construction time (fail fast with clear errors).
"""
from dataclasses import dataclass, field, replace
from typing import Dict

from ..shared.defaults import (
    RSI_PERIOD, RSI_OVERSOLD, RSI_OVERBOUGHT,
    STOCH_K_PERIOD, STOCH_D_PERIOD, STOCH_OVERSOLD, STOCH_OVERBOUGHT,
    ATR_PERIOD, VOLUME_SMA_PERIOD, EMA_FAST_PERIOD, EMA_SLOW_PERIOD,
    MIN_DURATION, MAX_DURATION, SWING_STRENGTH, END_SWING_STRENGTH,
    PREFER_SHORTEST, PIVOT_BODY_RATIO, PIVOT_MIN_CONFIRM_BARS,
    STARTING_BALANCE, LEVERAGE, CAPITAL_PERCENTAGE,
    FEES_ENABLED, TAKER_FEE_PERCENT,
    TP1_AVG_PERCENT, TP1_CLOSE_FRACTION, TP2_AVG_PERCENT,
    CONFIRMATION_BARS, MAX_LOSS_PERCENT, VOLUME_FACTOR,
    TRAILING_ACTIVATION_PERCENT, TRAILING_CALLBACK_PERCENT,
    DYNAMIC_SL_MULTIPLIER, DYNAMIC_TP_MULTIPLIER,
    LIQUIDATION_GUARD, COUNTER_TREND_SIZE_FACTOR, AVG_MOVE_LOOKBACK_CYCLES,
    LIVE_SYMBOL, LIVE_INTERVAL, CANDLE_LIMIT, LOOP_INTERVAL_SECONDS,
    SIGNAL_FRESHNESS_BARS, QUANTITY_PRECISION, OPTIMIZE_INTERVAL_HOURS,
    MIN_HISTORY_BUFFER,
    GRID_MIN_RANGE, GRID_MAX_RANGE, GRID_STEP, GRID_MIN_GAP,
)


def _validate_config(
    *,
    min_duration: int,
    max_duration: int,
    swing_strength: int,
    end_swing_strength: int,
    rsi_oversold: float,
    rsi_overbought: float,
    stoch_oversold: float,
    stoch_overbought: float,
    pivot_body_ratio: float,
) -> None:
    """Validate detection parameters. Raises ValueError with clear message on failure."""
    if min_duration < 1:
        raise ValueError(f"min_duration must be >= 1, got {min_duration}")
    if max_duration < min_duration:
        raise ValueError(
            f"max_duration ({max_duration}) must be >= min_duration ({min_duration})"
        )
    if not (1 <= swing_strength <= 3):
        raise ValueError(f"swing_strength must be in [1, 3], got {swing_strength}")
    if end_swing_strength < 1:
        raise ValueError(f"end_swing_strength must be >= 1, got {end_swing_strength}")
    if rsi_oversold >= rsi_overbought:
        raise ValueError(
            f"RSI oversold ({rsi_oversold}) must be less than overbought ({rsi_overbought})"
        )
    if stoch_oversold >= stoch_overbought:
        raise ValueError(
            f"Stochastic oversold ({stoch_oversold}) must be less than overbought ({stoch_overbought})"
        )
    if not (0 <= pivot_body_ratio <= 1):
        raise ValueError(f"pivot_body_ratio must be in [0, 1], got {pivot_body_ratio}")


def _validate_bot_config(
    *,
    starting_balance: float,
    leverage: float,
    capital_percentage: float,
    taker_fee_percent: float,
    tp1_close_fraction: float,
    confirmation_bars: int,
    trailing_activation_percent: float,
    trailing_callback_percent: float,
    liquidation_guard: float,
    counter_trend_size_factor: float,
    avg_move_lookback_cycles: int,
) -> None:
    """Validate risk parameters. Raises ValueError with clear message on failure."""
    if starting_balance <= 0:
        raise ValueError(f"starting_balance must be > 0, got {starting_balance}")
    if leverage < 1:
        raise ValueError(f"leverage must be >= 1, got {leverage}")
    if not (0 < capital_percentage <= 100):
        raise ValueError(f"capital_percentage must be in (0, 100], got {capital_percentage}")
    if taker_fee_percent < 0:
        raise ValueError(f"taker_fee_percent must be >= 0, got {taker_fee_percent}")
    if not (0 < tp1_close_fraction <= 1):
        raise ValueError(
            f"tp1_close_fraction must be in (0, 1] (a fraction, not a percent), got {tp1_close_fraction}"
        )
    if confirmation_bars < 1:
        raise ValueError(f"confirmation_bars must be >= 1, got {confirmation_bars}")
    if trailing_activation_percent <= 0 or trailing_callback_percent <= 0:
        raise ValueError(
            f"trailing activation/callback must be > 0, got "
            f"{trailing_activation_percent}/{trailing_callback_percent}"
        )
    if not (0 < liquidation_guard <= 1):
        raise ValueError(f"liquidation_guard must be in (0, 1], got {liquidation_guard}")
    if not (0 < counter_trend_size_factor <= 1):
        raise ValueError(
            f"counter_trend_size_factor must be in (0, 1], got {counter_trend_size_factor}"
        )
    if avg_move_lookback_cycles < 1:
        raise ValueError(f"avg_move_lookback_cycles must be >= 1, got {avg_move_lookback_cycles}")


@dataclass
class DetectorConfig:
    """Configuration for cycle detection."""
    # Duration bounds (bars between start and end pivot, inclusive)
    min_duration: int = MIN_DURATION
    max_duration: int = MAX_DURATION

    # Pivot tests
    swing_strength: int = SWING_STRENGTH  # Neighbours each side of a start pivot
    end_swing_strength: int = END_SWING_STRENGTH  # Neighbours each side of an end pivot
    prefer_shortest: bool = PREFER_SHORTEST  # Accept start + min_duration immediately when valid
    pivot_body_ratio: float = PIVOT_BODY_RATIO
    pivot_min_confirm_bars: int = PIVOT_MIN_CONFIRM_BARS

    # Optional filters
    use_momentum_filter: bool = False  # Requires a momentum series at detection time
    use_rsi_stoch_filter: bool = False  # Start and end pivots must pass RSI/Stochastic confirmation

    # Indicator parameters (RSI/Stochastic filter)
    rsi_period: int = RSI_PERIOD
    rsi_oversold: float = RSI_OVERSOLD
    rsi_overbought: float = RSI_OVERBOUGHT
    stoch_k_period: int = STOCH_K_PERIOD
    stoch_d_period: int = STOCH_D_PERIOD
    stoch_oversold: float = STOCH_OVERSOLD
    stoch_overbought: float = STOCH_OVERBOUGHT

    def __post_init__(self) -> None:
        _validate_config(
            min_duration=self.min_duration,
            max_duration=self.max_duration,
            swing_strength=self.swing_strength,
            end_swing_strength=self.end_swing_strength,
            rsi_oversold=self.rsi_oversold,
            rsi_overbought=self.rsi_overbought,
            stoch_oversold=self.stoch_oversold,
            stoch_overbought=self.stoch_overbought,
            pivot_body_ratio=self.pivot_body_ratio,
        )

    def confirmation_window(self, strength: int) -> int:
        """Bars scanned after a swing for its confirming candle."""
        return max(self.pivot_min_confirm_bars, strength + 1)


@dataclass
class BotConfig:
    """Configuration for the position state machine and entry rules."""
    # Account / sizing
    starting_balance: float = STARTING_BALANCE
    leverage: float = LEVERAGE
    capital_percentage: float = CAPITAL_PERCENTAGE  # % of balance per trade, before leverage

    # Sides
    enable_long: bool = True  # Trade inverted cycles
    enable_short: bool = True  # Trade normal cycles

    # Costs
    fees_enabled: bool = FEES_ENABLED
    taker_fee_percent: float = TAKER_FEE_PERCENT  # Per side, on notional

    # Take profits (percent of the trailing average cycle move)
    tp1_avg_percent: float = TP1_AVG_PERCENT
    tp1_close_fraction: float = TP1_CLOSE_FRACTION  # Fraction (0-1) closed at TP1
    tp2_avg_percent: float = TP2_AVG_PERCENT

    # Entry rules
    use_confirmation: bool = False  # Wait for consecutive favourable closes before entering
    confirmation_bars: int = CONFIRMATION_BARS
    multi_trade: bool = True  # Re-enter / roll the position when the cycle end moves
    use_volume_filter: bool = False
    volume_factor: float = VOLUME_FACTOR
    use_trend_filter: bool = False  # Counter-trend entries use reduced size
    counter_trend_size_factor: float = COUNTER_TREND_SIZE_FACTOR

    # Exit rules
    close_on_opposite: bool = False  # Close when an opposite cycle completes after entry
    use_max_loss: bool = False
    max_loss_percent: float = MAX_LOSS_PERCENT  # % of starting balance
    use_trailing_stop: bool = True
    trailing_activation_percent: float = TRAILING_ACTIVATION_PERCENT
    trailing_callback_percent: float = TRAILING_CALLBACK_PERCENT
    use_dynamic_exits: bool = True  # ATR-based SL/TP instead of cycle extremes
    dynamic_sl_multiplier: float = DYNAMIC_SL_MULTIPLIER
    dynamic_tp_multiplier: float = DYNAMIC_TP_MULTIPLIER
    liquidation_guard: float = LIQUIDATION_GUARD

    # Indicator windows used by the driver
    atr_period: int = ATR_PERIOD
    volume_sma_period: int = VOLUME_SMA_PERIOD
    ema_fast_period: int = EMA_FAST_PERIOD
    ema_slow_period: int = EMA_SLOW_PERIOD
    avg_move_lookback_cycles: int = AVG_MOVE_LOOKBACK_CYCLES

    def __post_init__(self) -> None:
        _validate_bot_config(
            starting_balance=self.starting_balance,
            leverage=self.leverage,
            capital_percentage=self.capital_percentage,
            taker_fee_percent=self.taker_fee_percent,
            tp1_close_fraction=self.tp1_close_fraction,
            confirmation_bars=self.confirmation_bars,
            trailing_activation_percent=self.trailing_activation_percent,
            trailing_callback_percent=self.trailing_callback_percent,
            liquidation_guard=self.liquidation_guard,
            counter_trend_size_factor=self.counter_trend_size_factor,
            avg_move_lookback_cycles=self.avg_move_lookback_cycles,
        )


@dataclass
class LiveConfig:
    """Configuration for live execution against an exchange."""
    symbol: str = LIVE_SYMBOL
    interval: str = LIVE_INTERVAL
    candle_limit: int = CANDLE_LIMIT
    loop_interval_seconds: int = LOOP_INTERVAL_SECONDS
    signal_freshness_bars: int = SIGNAL_FRESHNESS_BARS
    quantity_precision: int = QUANTITY_PRECISION
    min_history_buffer: int = MIN_HISTORY_BUFFER
    testnet: bool = False
    dry_run: bool = False  # Log intended orders without sending them

    # Periodic duration-range re-optimization (0 disables)
    optimize_interval_hours: float = OPTIMIZE_INTERVAL_HOURS
    grid_min_range: int = GRID_MIN_RANGE
    grid_max_range: int = GRID_MAX_RANGE
    grid_step: int = GRID_STEP
    grid_min_gap: int = GRID_MIN_GAP

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("symbol must not be empty")
        if self.candle_limit < 1:
            raise ValueError(f"candle_limit must be >= 1, got {self.candle_limit}")
        if self.loop_interval_seconds <= 0:
            raise ValueError(f"loop_interval_seconds must be > 0, got {self.loop_interval_seconds}")
        if self.signal_freshness_bars < 1:
            raise ValueError(f"signal_freshness_bars must be >= 1, got {self.signal_freshness_bars}")
        if self.quantity_precision < 0:
            raise ValueError(f"quantity_precision must be >= 0, got {self.quantity_precision}")
        if self.optimize_interval_hours < 0:
            raise ValueError(f"optimize_interval_hours must be >= 0, got {self.optimize_interval_hours}")
        if self.grid_max_range <= self.grid_min_range or self.grid_step < 1:
            raise ValueError(
                f"Invalid re-optimization grid: {self.grid_min_range}..{self.grid_max_range} step {self.grid_step}"
            )


@dataclass
class StrategyConfig:
    """Complete strategy configuration: detection, risk and live settings."""
    name: str
    description: str = ""
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    bot: BotConfig = field(default_factory=BotConfig)
    live: LiveConfig = field(default_factory=LiveConfig)

    def with_durations(self, min_duration: int, max_duration: int) -> "StrategyConfig":
        """Copy with a different duration range (used by grid search and re-optimization)."""
        return replace(
            self,
            name=f"{self.name}_d{min_duration}-{max_duration}",
            detector=replace(self.detector, min_duration=min_duration, max_duration=max_duration),
        )


BASELINE_CONFIG = StrategyConfig(
    name="baseline",
    description="Default detection (13-33 bars) with trailing stop and ATR exits",
)

PRESET_CONFIGS: Dict[str, StrategyConfig] = {
    "baseline": BASELINE_CONFIG,

    # Live server settings: smaller size, larger TP1 exit
    "server": StrategyConfig(
        name="server",
        description="Live server settings (15% capital, TP1 at 25% closing 90%)",
        bot=BotConfig(
            capital_percentage=15.0,
            tp1_avg_percent=25.0,
            tp1_close_fraction=0.9,
        ),
    ),

    # Confirmed entries only, capped losses, no ATR exits
    "conservative": StrategyConfig(
        name="conservative",
        description="2-bar confirmation, max-loss stop, cycle-extreme exits, 10x",
        detector=DetectorConfig(swing_strength=2),
        bot=BotConfig(
            leverage=10,
            capital_percentage=15.0,
            use_confirmation=True,
            use_max_loss=True,
            use_dynamic_exits=False,
            close_on_opposite=True,
        ),
    ),
}


def get_preset(name: str) -> StrategyConfig:
    """Look up a preset by name. Raises ValueError listing available presets."""
    if name not in PRESET_CONFIGS:
        raise ValueError(f"Unknown preset '{name}'. Available: {sorted(PRESET_CONFIGS)}")
    return PRESET_CONFIGS[name]

