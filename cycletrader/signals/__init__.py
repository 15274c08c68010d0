"""
Cycle detection and strategy configuration.

Provides:
- Swing pivot tests and their candle confirmation
- CycleDetector (constrained search over swing extrema)
- Detector, bot and live configuration with presets and YAML I/O
"""
from .config import (
    BotConfig,
    DetectorConfig,
    LiveConfig,
    StrategyConfig,
    PRESET_CONFIGS,
    BASELINE_CONFIG,
    get_preset,
)
from .config_loader import config_to_dict, load_config_from_yaml, save_config_to_yaml
from .cycle_detector import CycleDetector, as_candle_arrays
from .pivots import confirm_swing_high, confirm_swing_low, is_swing_high, is_swing_low

__all__ = [
    'BotConfig',
    'DetectorConfig',
    'LiveConfig',
    'StrategyConfig',
    'PRESET_CONFIGS',
    'BASELINE_CONFIG',
    'get_preset',
    'config_to_dict',
    'load_config_from_yaml',
    'save_config_to_yaml',
    'CycleDetector',
    'as_candle_arrays',
    'confirm_swing_high',
    'confirm_swing_low',
    'is_swing_high',
    'is_swing_low',
]
