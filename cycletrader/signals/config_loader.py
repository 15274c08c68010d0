"""
YAML configuration loader for cycle strategies.

Loads strategy configurations from YAML files, allowing easy sharing
and modification of strategies without code changes. Every key is optional;
missing keys fall back to shared.defaults.
"""
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .config import BotConfig, DetectorConfig, LiveConfig, StrategyConfig
from ..shared.defaults import *


def _detector_from_dict(config_dict: Dict[str, Any]) -> DetectorConfig:
    detection = config_dict.get('detection', {}) or {}
    filters = config_dict.get('filters', {}) or {}
    momentum = filters.get('momentum', {}) or {}
    rsi_stoch = filters.get('rsi_stoch', {}) or {}

    return DetectorConfig(
        min_duration=detection.get('min_duration', MIN_DURATION),
        max_duration=detection.get('max_duration', MAX_DURATION),
        swing_strength=detection.get('swing_strength', SWING_STRENGTH),
        end_swing_strength=detection.get('end_swing_strength', END_SWING_STRENGTH),
        prefer_shortest=detection.get('prefer_shortest', PREFER_SHORTEST),
        pivot_body_ratio=detection.get('pivot_body_ratio', PIVOT_BODY_RATIO),
        pivot_min_confirm_bars=detection.get('pivot_min_confirm_bars', PIVOT_MIN_CONFIRM_BARS),
        use_momentum_filter=momentum.get('enabled', False),
        use_rsi_stoch_filter=rsi_stoch.get('enabled', False),
        rsi_period=rsi_stoch.get('rsi_period', RSI_PERIOD),
        rsi_oversold=rsi_stoch.get('rsi_oversold', RSI_OVERSOLD),
        rsi_overbought=rsi_stoch.get('rsi_overbought', RSI_OVERBOUGHT),
        stoch_k_period=rsi_stoch.get('stoch_k_period', STOCH_K_PERIOD),
        stoch_d_period=rsi_stoch.get('stoch_d_period', STOCH_D_PERIOD),
        stoch_oversold=rsi_stoch.get('stoch_oversold', STOCH_OVERSOLD),
        stoch_overbought=rsi_stoch.get('stoch_overbought', STOCH_OVERBOUGHT),
    )


def _bot_from_dict(config_dict: Dict[str, Any]) -> BotConfig:
    filters = config_dict.get('filters', {}) or {}
    volume = filters.get('volume', {}) or {}
    trend = filters.get('trend', {}) or {}
    risk = config_dict.get('risk', {}) or {}
    max_loss = risk.get('max_loss', {}) or {}
    entries = config_dict.get('entries', {}) or {}
    confirmation = entries.get('confirmation', {}) or {}
    exits = config_dict.get('exits', {}) or {}
    trailing = exits.get('trailing_stop', {}) or {}
    dynamic = exits.get('dynamic', {}) or {}
    costs = config_dict.get('costs', {}) or {}

    return BotConfig(
        starting_balance=float(risk.get('starting_balance', STARTING_BALANCE)),
        leverage=risk.get('leverage', LEVERAGE),
        capital_percentage=float(risk.get('capital_percentage', CAPITAL_PERCENTAGE)),
        use_max_loss=max_loss.get('enabled', False),
        max_loss_percent=float(max_loss.get('percent', MAX_LOSS_PERCENT)),
        liquidation_guard=float(risk.get('liquidation_guard', LIQUIDATION_GUARD)),
        enable_long=entries.get('enable_long', True),
        enable_short=entries.get('enable_short', True),
        multi_trade=entries.get('multi_trade', True),
        use_confirmation=confirmation.get('enabled', False),
        confirmation_bars=confirmation.get('bars', CONFIRMATION_BARS),
        use_volume_filter=volume.get('enabled', False),
        volume_factor=float(volume.get('factor', VOLUME_FACTOR)),
        volume_sma_period=volume.get('sma_period', VOLUME_SMA_PERIOD),
        use_trend_filter=trend.get('enabled', False),
        ema_fast_period=trend.get('fast_period', EMA_FAST_PERIOD),
        ema_slow_period=trend.get('slow_period', EMA_SLOW_PERIOD),
        counter_trend_size_factor=float(trend.get('counter_trend_size_factor', COUNTER_TREND_SIZE_FACTOR)),
        tp1_avg_percent=float(exits.get('tp1_avg_percent', TP1_AVG_PERCENT)),
        tp1_close_fraction=float(exits.get('tp1_close_fraction', TP1_CLOSE_FRACTION)),
        tp2_avg_percent=float(exits.get('tp2_avg_percent', TP2_AVG_PERCENT)),
        close_on_opposite=exits.get('close_on_opposite', False),
        avg_move_lookback_cycles=exits.get('avg_move_lookback_cycles', AVG_MOVE_LOOKBACK_CYCLES),
        use_trailing_stop=trailing.get('enabled', True),
        trailing_activation_percent=float(trailing.get('activation_percent', TRAILING_ACTIVATION_PERCENT)),
        trailing_callback_percent=float(trailing.get('callback_percent', TRAILING_CALLBACK_PERCENT)),
        use_dynamic_exits=dynamic.get('enabled', True),
        dynamic_sl_multiplier=float(dynamic.get('sl_multiplier', DYNAMIC_SL_MULTIPLIER)),
        dynamic_tp_multiplier=float(dynamic.get('tp_multiplier', DYNAMIC_TP_MULTIPLIER)),
        atr_period=dynamic.get('atr_period', ATR_PERIOD),
        fees_enabled=costs.get('fees_enabled', FEES_ENABLED),
        taker_fee_percent=float(costs.get('taker_fee_percent', TAKER_FEE_PERCENT)),
    )


def _live_from_dict(config_dict: Dict[str, Any]) -> LiveConfig:
    live = config_dict.get('live', {}) or {}
    optimization = live.get('optimization', {}) or {}

    return LiveConfig(
        symbol=live.get('symbol', LIVE_SYMBOL),
        interval=live.get('interval', LIVE_INTERVAL),
        candle_limit=live.get('candle_limit', CANDLE_LIMIT),
        loop_interval_seconds=live.get('loop_interval_seconds', LOOP_INTERVAL_SECONDS),
        signal_freshness_bars=live.get('signal_freshness_bars', SIGNAL_FRESHNESS_BARS),
        quantity_precision=live.get('quantity_precision', QUANTITY_PRECISION),
        min_history_buffer=live.get('min_history_buffer', MIN_HISTORY_BUFFER),
        testnet=live.get('testnet', False),
        dry_run=live.get('dry_run', False),
        optimize_interval_hours=optimization.get('interval_hours', OPTIMIZE_INTERVAL_HOURS),
        grid_min_range=optimization.get('min_range', GRID_MIN_RANGE),
        grid_max_range=optimization.get('max_range', GRID_MAX_RANGE),
        grid_step=optimization.get('step', GRID_STEP),
        grid_min_gap=optimization.get('min_gap', GRID_MIN_GAP),
    )


def load_config_from_yaml(yaml_path: Union[str, Path]) -> StrategyConfig:
    """
    Load strategy configuration from YAML file.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        StrategyConfig object

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If YAML is empty or a value fails validation
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, 'r') as f:
        config_dict = yaml.safe_load(f)

    if not config_dict:
        raise ValueError(f"Empty config file: {yaml_path}")
    if not isinstance(config_dict, dict):
        raise ValueError(f"Config file must contain a mapping at top level: {yaml_path}")

    return StrategyConfig(
        name=config_dict.get('name', yaml_path.stem),
        description=config_dict.get('description', ''),
        detector=_detector_from_dict(config_dict),
        bot=_bot_from_dict(config_dict),
        live=_live_from_dict(config_dict),
    )


def config_to_dict(config: StrategyConfig) -> Dict[str, Any]:
    """Nested dict in the same shape load_config_from_yaml reads."""
    det, bot, live = config.detector, config.bot, config.live
    return {
        'name': config.name,
        'description': config.description,

        'detection': {
            'min_duration': det.min_duration,
            'max_duration': det.max_duration,
            'swing_strength': det.swing_strength,
            'end_swing_strength': det.end_swing_strength,
            'prefer_shortest': det.prefer_shortest,
            'pivot_body_ratio': det.pivot_body_ratio,
            'pivot_min_confirm_bars': det.pivot_min_confirm_bars,
        },

        'filters': {
            'momentum': {'enabled': det.use_momentum_filter},
            'rsi_stoch': {
                'enabled': det.use_rsi_stoch_filter,
                'rsi_period': det.rsi_period,
                'rsi_oversold': det.rsi_oversold,
                'rsi_overbought': det.rsi_overbought,
                'stoch_k_period': det.stoch_k_period,
                'stoch_d_period': det.stoch_d_period,
                'stoch_oversold': det.stoch_oversold,
                'stoch_overbought': det.stoch_overbought,
            },
            'volume': {
                'enabled': bot.use_volume_filter,
                'factor': bot.volume_factor,
                'sma_period': bot.volume_sma_period,
            },
            'trend': {
                'enabled': bot.use_trend_filter,
                'fast_period': bot.ema_fast_period,
                'slow_period': bot.ema_slow_period,
                'counter_trend_size_factor': bot.counter_trend_size_factor,
            },
        },

        'risk': {
            'starting_balance': bot.starting_balance,
            'leverage': bot.leverage,
            'capital_percentage': bot.capital_percentage,
            'liquidation_guard': bot.liquidation_guard,
            'max_loss': {
                'enabled': bot.use_max_loss,
                'percent': bot.max_loss_percent,
            },
        },

        'entries': {
            'enable_long': bot.enable_long,
            'enable_short': bot.enable_short,
            'multi_trade': bot.multi_trade,
            'confirmation': {
                'enabled': bot.use_confirmation,
                'bars': bot.confirmation_bars,
            },
        },

        'exits': {
            'tp1_avg_percent': bot.tp1_avg_percent,
            'tp1_close_fraction': bot.tp1_close_fraction,
            'tp2_avg_percent': bot.tp2_avg_percent,
            'close_on_opposite': bot.close_on_opposite,
            'avg_move_lookback_cycles': bot.avg_move_lookback_cycles,
            'trailing_stop': {
                'enabled': bot.use_trailing_stop,
                'activation_percent': bot.trailing_activation_percent,
                'callback_percent': bot.trailing_callback_percent,
            },
            'dynamic': {
                'enabled': bot.use_dynamic_exits,
                'sl_multiplier': bot.dynamic_sl_multiplier,
                'tp_multiplier': bot.dynamic_tp_multiplier,
                'atr_period': bot.atr_period,
            },
        },

        'costs': {
            'fees_enabled': bot.fees_enabled,
            'taker_fee_percent': bot.taker_fee_percent,
        },

        'live': {
            'symbol': live.symbol,
            'interval': live.interval,
            'candle_limit': live.candle_limit,
            'loop_interval_seconds': live.loop_interval_seconds,
            'signal_freshness_bars': live.signal_freshness_bars,
            'quantity_precision': live.quantity_precision,
            'min_history_buffer': live.min_history_buffer,
            'testnet': live.testnet,
            'dry_run': live.dry_run,
            'optimization': {
                'interval_hours': live.optimize_interval_hours,
                'min_range': live.grid_min_range,
                'max_range': live.grid_max_range,
                'step': live.grid_step,
                'min_gap': live.grid_min_gap,
            },
        },
    }


def save_config_to_yaml(config: StrategyConfig, yaml_path: Union[str, Path]) -> None:
    """
    Save strategy configuration to YAML file.

    Args:
        config: StrategyConfig object to save
        yaml_path: Path where to save YAML file
    """
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    with open(yaml_path, 'w') as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False)
