"""Core portfolio components."""

from rebalance.core.charts import Chart, Charts, TmpChart, slice_by_date, start_end_date
from rebalance.core.compute import (
    BestRebalanceTrigger,
    RebalanceData,
    RebalanceStats,
    RebalanceStatsSummary,
    RebalanceTrigger,
    TriggerResult,
    adapt_pricedev_to_initial_balance,
    best_rebalance_trigger,
    compute_balance_over_months,
    compute_final_balance,
    rebalance_stats,
    unzip_balance_iter,
    yearly_return,
)
from rebalance.core.dates import (
    Interval,
    MonthDate,
    date_after_n_months,
    fill_between,
    n_months_between_dates,
)
from rebalance.core.fractions import add_fraction, normalize_fractions, redistribute_fractions
from rebalance.core.payments import MonthlyPayments, PaymentExpression
from rebalance.core.simulation import ParsedSimInput, SimInput, Vola, random_walk

__all__ = [
    "BestRebalanceTrigger",
    "Chart",
    "Charts",
    "Interval",
    "MonthDate",
    "MonthlyPayments",
    "ParsedSimInput",
    "PaymentExpression",
    "RebalanceData",
    "RebalanceStats",
    "RebalanceStatsSummary",
    "RebalanceTrigger",
    "SimInput",
    "TmpChart",
    "TriggerResult",
    "Vola",
    "adapt_pricedev_to_initial_balance",
    "add_fraction",
    "best_rebalance_trigger",
    "compute_balance_over_months",
    "compute_final_balance",
    "date_after_n_months",
    "fill_between",
    "n_months_between_dates",
    "normalize_fractions",
    "random_walk",
    "rebalance_stats",
    "redistribute_fractions",
    "slice_by_date",
    "start_end_date",
    "unzip_balance_iter",
    "yearly_return",
]
