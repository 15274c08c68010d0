"""
Tests for the parameter grid search.
"""
from unittest.mock import patch

import pytest

from cycletrader.grid_test.grid_search import (
    GridResult,
    apply_params,
    best_duration_range,
    evaluate_combination,
    expand_parameter_grid,
    generate_duration_grid,
    run_grid_search,
)
from cycletrader.signals.config import BotConfig, DetectorConfig

FIXED_EXITS = BotConfig(use_dynamic_exits=False, use_trailing_stop=False)


def _result(pnl, trades=5, **params):
    return GridResult(
        params=params or {'min_duration': 9, 'max_duration': 21},
        pnl=pnl,
        pnl_percent=pnl / 10,
        trades=trades,
        positions=trades,
        win_rate=50.0,
        final_balance=1000.0 + pnl,
    )


class TestGridGeneration:
    def test_duration_grid_respects_gap(self):
        combos = generate_duration_grid(5, 11, 2, 3)
        assert [(c['min_duration'], c['max_duration']) for c in combos] == [(5, 9), (5, 11), (7, 11)]

    def test_duration_grid_default_bounds(self):
        combos = generate_duration_grid()
        assert all(c['max_duration'] > c['min_duration'] + 3 for c in combos)
        assert min(c['min_duration'] for c in combos) == 5
        assert max(c['max_duration'] for c in combos) == 55

    def test_invalid_step(self):
        with pytest.raises(ValueError, match="step"):
            generate_duration_grid(step=0)

    def test_expand_parameter_grid(self):
        combos = expand_parameter_grid({'min_duration': [9, 13], 'leverage': [10, 20]})
        assert len(combos) == 4
        assert {'min_duration': 13, 'leverage': 10} in combos

    def test_expand_rejects_unknown_and_empty(self):
        with pytest.raises(ValueError, match="Unknown grid parameters"):
            expand_parameter_grid({'not_a_param': [1]})
        with pytest.raises(ValueError, match="without values"):
            expand_parameter_grid({'leverage': []})

    def test_apply_params_routes_fields(self):
        det, bot = apply_params({'min_duration': 7, 'leverage': 5}, DetectorConfig(), BotConfig())
        assert det.min_duration == 7
        assert bot.leverage == 5
        # base configs untouched
        assert DetectorConfig().min_duration == 13


class TestEvaluation:
    def test_evaluate_v_shape(self, v_shape_candles):
        result = evaluate_combination(v_shape_candles, {'min_duration': 10, 'max_duration': 30}, bot_config=FIXED_EXITS)
        assert result.trades == 2
        assert result.positions == 1
        assert result.pnl > 0
        assert result.final_balance == pytest.approx(1000.0 + result.pnl)

    def test_failed_combination_returns_none(self, v_shape_candles):
        """max < min fails config validation; the error is contained."""
        assert evaluate_combination(v_shape_candles, {'min_duration': 20, 'max_duration': 10}) is None

    def test_simulation_error_returns_none(self, v_shape_candles):
        with patch(
            "cycletrader.grid_test.grid_search.WalkForwardSimulator.simulate",
            side_effect=RuntimeError("boom"),
        ):
            assert evaluate_combination(v_shape_candles, {'min_duration': 10}) is None


class TestRunGridSearch:
    def test_ranked_by_pnl(self, v_shape_candles):
        fake = [_result(10.0, min_duration=5), _result(50.0, min_duration=7), _result(-5.0, min_duration=9)]
        combos = [{'min_duration': 5}, {'min_duration': 7}, {'min_duration': 9}]
        with patch("cycletrader.grid_test.grid_search.evaluate_combination", side_effect=fake):
            results = run_grid_search(v_shape_candles, combinations=combos, min_trades=1)
        assert [r.pnl for r in results] == [50.0, 10.0, -5.0]

    def test_min_trades_and_failures_excluded(self, v_shape_candles):
        fake = [_result(10.0, trades=1), None, _result(5.0, trades=4)]
        combos = [{'min_duration': 5}, {'min_duration': 7}, {'min_duration': 9}]
        with patch("cycletrader.grid_test.grid_search.evaluate_combination", side_effect=fake):
            results = run_grid_search(v_shape_candles, combinations=combos, min_trades=3)
        assert [r.pnl for r in results] == [5.0]

    def test_unknown_combination_parameter(self, v_shape_candles):
        with pytest.raises(ValueError, match="Unknown grid parameters"):
            run_grid_search(v_shape_candles, combinations=[{'bogus': 1}])

    def test_real_sweep_isolates_bad_combinations(self, v_shape_candles):
        combos = [
            {'min_duration': 10, 'max_duration': 30},
            {'min_duration': 20, 'max_duration': 10},
        ]
        results = run_grid_search(v_shape_candles, bot_config=FIXED_EXITS, combinations=combos, min_trades=1)
        assert len(results) == 1
        assert results[0].params == {'min_duration': 10, 'max_duration': 30}

    def test_best_duration_range(self, v_shape_candles):
        fake = [
            _result(1.0, min_duration=5, max_duration=9),
            _result(3.0, min_duration=5, max_duration=11),
            _result(2.0, min_duration=7, max_duration=11),
        ]
        with patch("cycletrader.grid_test.grid_search.evaluate_combination", side_effect=fake):
            best = best_duration_range(v_shape_candles, min_range=5, max_range=11, step=2, min_gap=3)
        assert best.params == {'min_duration': 5, 'max_duration': 11}

    def test_best_duration_range_none(self, v_shape_candles):
        with patch("cycletrader.grid_test.grid_search.evaluate_combination", return_value=None):
            assert best_duration_range(v_shape_candles, min_range=5, max_range=11, step=2, min_gap=3) is None
