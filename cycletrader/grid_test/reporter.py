"""
Grid search reporting: result tables, CSV export and charts.
"""
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from ..evaluation.simulation_types import SimulationResult
from .grid_search import GridResult


def results_to_frame(results: Sequence[GridResult]) -> pd.DataFrame:
    """One row per combination, parameters first, in the given (ranked) order."""
    if not results:
        return pd.DataFrame(
            columns=['pnl', 'pnl_percent', 'trades', 'positions', 'win_rate', 'final_balance', 'max_drawdown_pct']
        )
    df = pd.DataFrame([r.to_dict() for r in results])
    df.insert(0, 'rank', range(1, len(df) + 1))
    return df


class GridReporter:
    """Writes grid search tables and charts into one output directory."""

    def __init__(self, output_dir: Optional[str] = None):
        """
        Initialize the reporter.

        Args:
            output_dir: Directory for output files (default: current directory)
        """
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def print_summary(self, results: Sequence[GridResult], top_n: int = 10) -> None:
        if not results:
            print("No viable combinations.")
            return
        print(f"\n{'=' * 72}")
        print(f"TOP {min(top_n, len(results))} OF {len(results)} VIABLE COMBINATIONS")
        print(f"{'=' * 72}")
        for rank, r in enumerate(results[:top_n], start=1):
            label = ", ".join(f"{k}={v}" for k, v in r.params.items())
            print(
                f"{rank:>3}. {label:<32} PnL {r.pnl:>+10.2f} ({r.pnl_percent:+.1f}%)  "
                f"Trades {r.trades:>4}  Win {r.win_rate:5.1f}%  MaxDD {r.max_drawdown_pct:.1f}%"
            )

    def save_results_csv(self, results: Sequence[GridResult], filename: Optional[str] = None) -> str:
        """
        Save ranked results to a CSV file.

        Returns:
            Path to the generated CSV
        """
        if filename is None:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            filename = f"grid_results_{timestamp}.csv"
        output_path = self.output_dir / filename
        results_to_frame(results).to_csv(output_path, index=False)
        return str(output_path)

    def save_trades_csv(self, result: SimulationResult, filename: str = "trades.csv") -> str:
        output_path = self.output_dir / filename
        result.trades_frame().to_csv(output_path, index=False)
        return str(output_path)

    def plot_equity_curve(
        self,
        result: SimulationResult,
        filename: str = "equity_curve.png",
        title: Optional[str] = None,
    ) -> str:
        """
        Plot realized balance and marked-to-market equity per bar.

        Returns:
            Path to the generated chart, or "" when the curve is empty
        """
        if not result.equity_curve:
            return ""
        frame = result.equity_frame()
        x = frame.index if frame.index.notna().all() else frame['index']

        fig, ax = plt.subplots(figsize=(14, 6))
        ax.plot(x, frame['equity'], color='steelblue', linewidth=1.2, label='Equity')
        ax.plot(x, frame['balance'], color='darkorange', linewidth=1.0, alpha=0.8, label='Balance')
        ax.axhline(y=result.starting_balance, color='gray', linestyle='--', alpha=0.5, label='Starting balance')

        x_by_bar = dict(zip(frame['index'], x))
        for trade in result.trades:
            if trade.partial or trade.exit_index not in x_by_bar:
                continue
            ax.axvline(
                x=x_by_bar[trade.exit_index],
                color='green' if trade.is_win else 'indianred',
                alpha=0.15,
                linewidth=0.8,
            )

        ax.set_title(title or f"Equity curve (PnL {result.pnl_percent:+.1f}%)")
        ax.set_ylabel('Balance')
        ax.grid(True, alpha=0.3)
        ax.legend(loc='upper left')

        output_path = self.output_dir / filename
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        plt.close()
        return str(output_path)

    def plot_duration_heatmap(
        self,
        results: Sequence[GridResult],
        filename: str = "duration_heatmap.png",
        metric: str = 'pnl_percent',
    ) -> str:
        """
        Heatmap of ``metric`` over (min_duration, max_duration).

        Returns:
            Path to the generated chart, or "" when no result carries both durations
        """
        rows = [
            (r.params['min_duration'], r.params['max_duration'], getattr(r, metric))
            for r in results
            if 'min_duration' in r.params and 'max_duration' in r.params
        ]
        if not rows:
            return ""
        df = pd.DataFrame(rows, columns=['min_duration', 'max_duration', metric])
        pivot = df.pivot_table(index='min_duration', columns='max_duration', values=metric, aggfunc='max')

        fig, ax = plt.subplots(figsize=(12, 8))
        values = pivot.values
        limit = np.nanmax(np.abs(values)) if np.isfinite(values).any() else 1.0
        image = ax.imshow(values, cmap='RdYlGn', aspect='auto', origin='lower', vmin=-limit, vmax=limit)
        ax.set_xticks(range(len(pivot.columns)))
        ax.set_xticklabels(pivot.columns)
        ax.set_yticks(range(len(pivot.index)))
        ax.set_yticklabels(pivot.index)
        ax.set_xlabel('Max duration (bars)')
        ax.set_ylabel('Min duration (bars)')
        ax.set_title(f'{metric} by duration range')
        fig.colorbar(image, ax=ax, label=metric)

        output_path = self.output_dir / filename
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        plt.close()
        return str(output_path)


def save_results_csv(results: Sequence[GridResult], path: str) -> str:
    """Write ranked results to ``path``; returns the path."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    results_to_frame(results).to_csv(output_path, index=False)
    return str(output_path)


def plot_equity_curve(result: SimulationResult, path: str, title: Optional[str] = None) -> str:
    output_path = Path(path)
    return GridReporter(str(output_path.parent)).plot_equity_curve(result, output_path.name, title)


def plot_duration_heatmap(results: List[GridResult], path: str, metric: str = 'pnl_percent') -> str:
    output_path = Path(path)
    return GridReporter(str(output_path.parent)).plot_duration_heatmap(results, output_path.name, metric)
