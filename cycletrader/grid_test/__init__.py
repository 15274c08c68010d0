"""
Grid search and reporting module.

Provides parameter sweeps over detection and risk settings, ranking of the
viable combinations, and CSV/chart output.
"""
from .grid_search import (
    GridResult,
    best_duration_range,
    evaluate_combination,
    expand_parameter_grid,
    generate_duration_grid,
    run_grid_search,
)
from .reporter import GridReporter, plot_duration_heatmap, plot_equity_curve, results_to_frame, save_results_csv

__all__ = [
    'GridResult',
    'best_duration_range',
    'evaluate_combination',
    'expand_parameter_grid',
    'generate_duration_grid',
    'run_grid_search',
    'GridReporter',
    'plot_duration_heatmap',
    'plot_equity_curve',
    'results_to_frame',
    'save_results_csv',
]
