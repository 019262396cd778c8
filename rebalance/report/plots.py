"""Matplotlib-based plot generation for report assets."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import matplotlib
import pandas as pd

from rebalance.core.charts import Chart, Charts
from rebalance.core.compute import RebalanceStats
from rebalance.core.dates import MonthDate

matplotlib.use("Agg")
import matplotlib.pyplot as plt


def generate_balance_plots(
    charts: Charts,
    output_dir: str | Path = "reports/assets",
    prefix: str = "balance",
    initial_balance: float | None = None,
    stats: RebalanceStats | None = None,
) -> list[Path]:
    """Generate price development, portfolio value and rebalance statistic PNG charts.

    Price developments are rebased to the initial balance of the tmp chart if
    there is one, else to `initial_balance`. The portfolio plot needs a
    previously computed balance and the statistics plot needs `stats`.
    """
    if not charts.persisted and charts.tmp is None:
        msg = "no charts to plot."
        raise ValueError(msg)

    asset_dir = Path(output_dir)
    asset_dir.mkdir(parents=True, exist_ok=True)

    rebase_to = charts.tmp.initial_balance if charts.tmp is not None else initial_balance
    dates = charts.dates(with_tmp=True)
    price_devs = list(charts.persisted)
    if charts.tmp is not None:
        price_devs.append(charts.tmp.chart)

    paths = [
        _plot_price_developments(
            price_devs=price_devs,
            start=dates[0],
            end=dates[-1],
            initial_balance=rebase_to,
            output_path=asset_dir / f"{prefix}_price_developments.png",
        )
    ]
    if charts.total_balance_over_month is not None and charts.total_payments_over_month is not None:
        paths.append(
            _plot_portfolio_value(
                balances=charts.total_balance_over_month,
                payments=charts.total_payments_over_month,
                output_path=asset_dir / f"{prefix}_portfolio_value.png",
            )
        )
    if stats is not None and not stats.per_horizon.empty:
        paths.append(
            _plot_rebalance_stats(
                per_horizon=stats.per_horizon,
                output_path=asset_dir / f"{prefix}_rebalance_stats.png",
            )
        )
    return paths


def _month_index(dates: Sequence[MonthDate]) -> pd.DatetimeIndex:
    return pd.DatetimeIndex(
        [pd.Timestamp(year=date.year, month=date.month, day=1) for date in dates]
    )


def _plot_price_developments(
    price_devs: Sequence[Chart],
    start: MonthDate,
    end: MonthDate,
    initial_balance: float | None,
    output_path: Path,
) -> Path:
    figure, axis = plt.subplots(figsize=(10, 4.5))
    for chart in price_devs:
        values = chart.values_between_dates(start, end, initial_balance)
        axis.plot(
            _month_index(chart.sliced_dates(start, end)),
            values,
            linewidth=1.6,
            label=chart.name,
        )
    axis.set_title("Price Developments")
    axis.set_xlabel("Month")
    axis.set_ylabel("Value" if initial_balance is None else "Value (rebased)")
    axis.grid(alpha=0.2)
    axis.legend(loc="upper left")
    figure.tight_layout()
    figure.savefig(output_path, dpi=150)
    plt.close(figure)
    return output_path


def _plot_portfolio_value(balances: Chart, payments: Chart, output_path: Path) -> Path:
    figure, axis = plt.subplots(figsize=(10, 4.5))
    axis.plot(
        _month_index(balances.dates),
        balances.values,
        color="#1f77b4",
        linewidth=2.0,
        label=balances.name,
    )
    axis.plot(
        _month_index(payments.dates),
        payments.values,
        color="#6b7280",
        linewidth=1.6,
        linestyle="--",
        label=payments.name,
    )
    axis.set_title("Portfolio Value")
    axis.set_xlabel("Month")
    axis.set_ylabel("Balance")
    axis.grid(alpha=0.2)
    axis.legend(loc="upper left")
    figure.tight_layout()
    figure.savefig(output_path, dpi=150)
    plt.close(figure)
    return output_path


def _plot_rebalance_stats(per_horizon: pd.DataFrame, output_path: Path) -> Path:
    figure, axis = plt.subplots(figsize=(10, 4.5))
    axis.plot(
        per_horizon["n_months"],
        per_horizon["mean_w_reb"],
        color="#2563eb",
        linewidth=1.8,
        label="with rebalancing",
    )
    axis.plot(
        per_horizon["n_months"],
        per_horizon["mean_wo_reb"],
        color="#d62728",
        linewidth=1.8,
        label="without rebalancing",
    )
    axis.set_title("Mean Final Balance per Horizon")
    axis.set_xlabel("Months invested")
    axis.set_ylabel("Mean final balance")
    axis.grid(alpha=0.2)
    axis.legend(loc="upper left")
    figure.tight_layout()
    figure.savefig(output_path, dpi=150)
    plt.close(figure)
    return output_path
