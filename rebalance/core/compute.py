"""Portfolio balance computation with rebalancing triggers.

All computations work on monthly price developments, one per asset, that
share the same timeline. Month 0 invests the initial balance according to the
target fractions. In every later month the asset balances follow their price
development, the monthly payment is split by the target fractions and, if the
trigger fires, the portfolio is reset to the target fractions.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from rebalance.core.dates import MonthDate
from rebalance.core.payments import MonthlyPayments

BEST_TRIGGER_MAX_INTERVAL = 120
BEST_TRIGGER_DEVIATIONS: tuple[float, ...] = tuple(step / 100.0 for step in range(1, 51))
DEFAULT_MIN_N_MONTHS = 10


@dataclass(frozen=True, slots=True)
class RebalanceTrigger:
    """Rebalance every `interval` months and/or when a fraction deviates too much."""

    interval: int | None = None
    deviation: float | None = None

    def __post_init__(self) -> None:
        if self.interval is not None and int(self.interval) < 1:
            msg = f"rebalance interval must be at least 1 month, got {self.interval}"
            raise ValueError(msg)
        if self.deviation is not None and not (0.0 < float(self.deviation) <= 1.0):
            msg = f"rebalance deviation must be in (0, 1], got {self.deviation}"
            raise ValueError(msg)

    @property
    def is_active(self) -> bool:
        return self.interval is not None or self.deviation is not None

    def is_triggered(
        self,
        step: int,
        balances: Sequence[float],
        fractions: Sequence[float],
    ) -> bool:
        hits = _trigger_hits(
            step=step,
            balances=np.asarray(balances, dtype=float)[None, :],
            fractions=np.asarray(fractions, dtype=float),
            intervals=np.asarray([self.interval or 0]),
            deviations=np.asarray([np.inf if self.deviation is None else self.deviation]),
        )
        return bool(hits[0])

    def describe(self) -> dict[str, object]:
        return {
            "interval": self.interval,
            "deviation_perc": None if self.deviation is None else round(self.deviation * 100, 4),
        }


@dataclass(slots=True)
class RebalanceData:
    """Trigger plus the target fractions to rebalance to."""

    trigger: RebalanceTrigger
    fractions: Sequence[float]


@dataclass(slots=True)
class TriggerResult:
    """Final numbers of one computation with a given trigger."""

    trigger: RebalanceTrigger
    final_balance: float
    total_payments: float


@dataclass(slots=True)
class BestRebalanceTrigger:
    """Best combined, deviation-only and interval-only triggers."""

    best: TriggerResult
    with_best_dev: TriggerResult
    with_best_interval: TriggerResult

    def as_frame(self) -> pd.DataFrame:
        rows = []
        for label, result in (
            ("best", self.best),
            ("deviation only", self.with_best_dev),
            ("interval only", self.with_best_interval),
        ):
            rows.append(
                {
                    "strategy": label,
                    "final_balance": result.final_balance,
                    "total_payments": result.total_payments,
                    **result.trigger.describe(),
                }
            )
        return pd.DataFrame(rows)


@dataclass(slots=True)
class RebalanceStatsSummary:
    """Means of the per-horizon means, split into thirds of the horizon range."""

    min_n_months: int
    n_months_33: int
    n_months_67: int
    max_n_months: int
    mean_across_months_w_reb_min_33: float
    mean_across_months_wo_reb_min_33: float
    mean_across_months_w_reb_33_67: float
    mean_across_months_wo_reb_33_67: float
    mean_across_months_w_reb_67_max: float
    mean_across_months_wo_reb_67_max: float
    mean_across_months_w_reb: float
    mean_across_months_wo_reb: float

    def as_frame(self) -> pd.DataFrame:
        ranges = (
            (self.min_n_months, self.n_months_33, "min_33"),
            (self.n_months_33, self.n_months_67, "33_67"),
            (self.n_months_67, self.max_n_months, "67_max"),
        )
        rows = []
        for low, high, suffix in ranges:
            with_reb = getattr(self, f"mean_across_months_w_reb_{suffix}")
            without_reb = getattr(self, f"mean_across_months_wo_reb_{suffix}")
            rows.append(_summary_row(low, high, with_reb, without_reb))
        rows.append(
            _summary_row(
                self.min_n_months,
                self.max_n_months,
                self.mean_across_months_w_reb,
                self.mean_across_months_wo_reb,
            )
        )
        return pd.DataFrame(rows)


@dataclass(slots=True)
class RebalanceStats:
    """Final balances with and without rebalancing for all horizons.

    `per_horizon` has one row per horizon length `n_months` with the number of
    rolling windows of that length and the mean final balance across them.
    """

    per_horizon: pd.DataFrame
    trigger: RebalanceTrigger

    def mean_across_nmonths(self) -> RebalanceStatsSummary:
        frame = self.per_horizon
        if frame.empty:
            msg = "rebalance statistics are empty."
            raise ValueError(msg)
        min_n_months = int(frame["n_months"].min())
        max_n_months = int(frame["n_months"].max())
        span = max_n_months - min_n_months
        n_months_33 = min_n_months + span // 3
        n_months_67 = min_n_months + (2 * span) // 3

        def mean_between(column: str, low: int, high: int, inclusive_high: bool) -> float:
            upper_mask = frame["n_months"] <= high if inclusive_high else frame["n_months"] < high
            selected = frame.loc[(frame["n_months"] >= low) & upper_mask, column]
            return float(selected.mean()) if not selected.empty else float("nan")

        return RebalanceStatsSummary(
            min_n_months=min_n_months,
            n_months_33=n_months_33,
            n_months_67=n_months_67,
            max_n_months=max_n_months,
            mean_across_months_w_reb_min_33=mean_between(
                "mean_w_reb", min_n_months, n_months_33, False
            ),
            mean_across_months_wo_reb_min_33=mean_between(
                "mean_wo_reb", min_n_months, n_months_33, False
            ),
            mean_across_months_w_reb_33_67=mean_between(
                "mean_w_reb", n_months_33, n_months_67, False
            ),
            mean_across_months_wo_reb_33_67=mean_between(
                "mean_wo_reb", n_months_33, n_months_67, False
            ),
            mean_across_months_w_reb_67_max=mean_between(
                "mean_w_reb", n_months_67, max_n_months, True
            ),
            mean_across_months_wo_reb_67_max=mean_between(
                "mean_wo_reb", n_months_67, max_n_months, True
            ),
            mean_across_months_w_reb=float(frame["mean_w_reb"].mean()),
            mean_across_months_wo_reb=float(frame["mean_wo_reb"].mean()),
        )


def adapt_pricedev_to_initial_balance(
    initial_balance: float,
    price_dev: Sequence[float],
) -> list[float]:
    """Rescale a price development so that it starts at `initial_balance`."""
    values = [float(value) for value in price_dev]
    if not values:
        return []
    if values[0] == 0.0:
        msg = "cannot rescale a price development that starts at 0."
        raise ValueError(msg)
    factor = initial_balance / values[0]
    return [value * factor for value in values]


def yearly_return(
    total_payments: float,
    n_months: int,
    final_balance: float,
) -> tuple[float, float]:
    """Return `(yearly_return_perc, total_yield)` of `final_balance` on `total_payments`."""
    if total_payments <= 0.0:
        return float("nan"), float("nan")
    total_yield = final_balance / total_payments
    if n_months <= 0 or total_yield < 0.0:
        return float("nan"), total_yield
    yearly_factor = total_yield ** (12.0 / n_months)
    return (yearly_factor - 1.0) * 100.0, total_yield


def compute_balance_over_months(
    price_devs: Sequence[Sequence[float]],
    initial_balance: float,
    monthly_payments: MonthlyPayments | None,
    rebalance_data: RebalanceData,
    start_date: MonthDate,
) -> Iterator[tuple[float, float]]:
    """Yield `(total_balance, total_payments)` for every month of the timeline."""
    price_matrix = _price_matrix(price_devs)
    fractions = _fractions_array(rebalance_data.fractions, n_assets=price_matrix.shape[1])
    trigger = rebalance_data.trigger
    intervals = np.asarray([trigger.interval or 0])
    deviations = np.asarray([np.inf if trigger.deviation is None else trigger.deviation])

    balances = (float(initial_balance) * fractions)[None, :]
    total_payments = float(initial_balance)
    yield float(balances.sum()), total_payments

    for step in range(1, price_matrix.shape[0]):
        payment = (
            monthly_payments.compute(start_date + step, step)
            if monthly_payments is not None
            else 0.0
        )
        balances = _advance(
            balances=balances,
            ratios=(price_matrix[step] / price_matrix[step - 1])[None, :],
            payments=np.asarray([payment]),
            fractions=fractions,
            step=step,
            intervals=intervals,
            deviations=deviations,
        )
        total_payments += payment
        yield float(balances.sum()), total_payments


def unzip_balance_iter(
    balance_iter: Iterable[tuple[float, float]],
) -> tuple[list[float], list[float]]:
    balances: list[float] = []
    payments: list[float] = []
    for balance, payment in balance_iter:
        balances.append(balance)
        payments.append(payment)
    return balances, payments


def compute_final_balance(
    price_devs: Sequence[Sequence[float]],
    initial_balance: float,
    monthly_payments: MonthlyPayments | None,
    rebalance_data: RebalanceData,
    start_date: MonthDate,
) -> TriggerResult:
    balances, payments = unzip_balance_iter(
        compute_balance_over_months(
            price_devs=price_devs,
            initial_balance=initial_balance,
            monthly_payments=monthly_payments,
            rebalance_data=rebalance_data,
            start_date=start_date,
        )
    )
    return TriggerResult(
        trigger=rebalance_data.trigger,
        final_balance=balances[-1],
        total_payments=payments[-1],
    )


def rebalance_stats(
    price_devs: Sequence[Sequence[float]],
    initial_balance: float,
    monthly_payments: MonthlyPayments | None,
    rebalance_data: RebalanceData,
    start_date: MonthDate,
    min_n_months: int = DEFAULT_MIN_N_MONTHS,
) -> RebalanceStats:
    """Compare rebalancing against buy-and-hold on all rolling windows.

    For every horizon between `min_n_months` and the full timeline, every
    window of that length is computed once with the given trigger and once
    without rebalancing. Each window is a computation of its own, so `n` in
    payment expressions counts from the window start. Costs of rebalancing
    are ignored.
    """
    if min_n_months < 1:
        msg = "min_n_months must be positive."
        raise ValueError(msg)
    price_matrix = _price_matrix(price_devs)
    total_months = price_matrix.shape[0] - 1
    if total_months < min_n_months:
        msg = (
            f"need at least {min_n_months} months for rebalance statistics, "
            f"got {total_months}"
        )
        raise ValueError(msg)

    fractions = _fractions_array(rebalance_data.fractions, n_assets=price_matrix.shape[1])
    trigger = rebalance_data.trigger
    ratios = price_matrix[1:] / price_matrix[:-1]
    payments = _payments_array(monthly_payments, start_date, total_months)
    step_payments = payments[1:]

    records: list[dict[str, float]] = []
    for n_months in range(min_n_months, total_months + 1):
        window_ratios = np.lib.stride_tricks.sliding_window_view(ratios, n_months, axis=0)
        window_ratios = np.transpose(window_ratios, (0, 2, 1))
        window_payments = _window_payments(
            monthly_payments=monthly_payments,
            start_date=start_date,
            step_payments=step_payments,
            n_months=n_months,
        )
        n_windows = window_ratios.shape[0]

        with_rebalance = _run_batch(
            ratios=window_ratios,
            payments=window_payments,
            initial_balance=float(initial_balance),
            fractions=fractions,
            intervals=np.full(n_windows, trigger.interval or 0),
            deviations=np.full(
                n_windows, np.inf if trigger.deviation is None else trigger.deviation
            ),
        )
        without_rebalance = _final_without_rebalancing(
            price_matrix=price_matrix,
            window_payments=window_payments,
            initial_balance=float(initial_balance),
            fractions=fractions,
            n_months=n_months,
        )
        records.append(
            {
                "n_months": n_months,
                "n_windows": n_windows,
                "mean_w_reb": float(np.mean(with_rebalance)),
                "mean_wo_reb": float(np.mean(without_rebalance)),
                "share_w_reb_better": float(np.mean(with_rebalance > without_rebalance)),
            }
        )

    return RebalanceStats(per_horizon=pd.DataFrame(records), trigger=trigger)


def best_rebalance_trigger(
    price_devs: Sequence[Sequence[float]],
    initial_balance: float,
    monthly_payments: MonthlyPayments | None,
    fractions: Sequence[float],
    start_date: MonthDate,
) -> BestRebalanceTrigger:
    """Grid search over rebalance intervals and deviation thresholds."""
    price_matrix = _price_matrix(price_devs)
    total_months = price_matrix.shape[0] - 1
    if total_months < 1:
        msg = "need at least two months to search for a rebalance trigger."
        raise ValueError(msg)

    fraction_array = _fractions_array(fractions, n_assets=price_matrix.shape[1])
    candidate_intervals = np.arange(1, min(total_months, BEST_TRIGGER_MAX_INTERVAL) + 1)
    candidate_deviations = np.asarray(BEST_TRIGGER_DEVIATIONS)

    combined_intervals, combined_deviations = np.meshgrid(
        candidate_intervals, candidate_deviations, indexing="ij"
    )
    intervals = np.concatenate(
        [
            combined_intervals.ravel(),
            np.zeros(len(candidate_deviations), dtype=int),
            candidate_intervals,
        ]
    )
    deviations = np.concatenate(
        [
            combined_deviations.ravel(),
            candidate_deviations,
            np.full(len(candidate_intervals), np.inf),
        ]
    )

    payments = _payments_array(monthly_payments, start_date, total_months)
    ratios = (price_matrix[1:] / price_matrix[:-1])[None, :, :]
    final_balances = _run_batch(
        ratios=ratios,
        payments=payments[None, 1:],
        initial_balance=float(initial_balance),
        fractions=fraction_array,
        intervals=intervals,
        deviations=deviations,
    )
    total_payments = float(initial_balance + payments[1:].sum())

    n_combined = combined_intervals.size
    n_deviation_only = len(candidate_deviations)
    groups = (
        slice(0, n_combined),
        slice(n_combined, n_combined + n_deviation_only),
        slice(n_combined + n_deviation_only, len(intervals)),
    )
    best_results = []
    for group in groups:
        local_idx = int(np.argmax(final_balances[group]))
        idx = group.start + local_idx
        trigger = RebalanceTrigger(
            interval=int(intervals[idx]) if intervals[idx] > 0 else None,
            deviation=float(deviations[idx]) if np.isfinite(deviations[idx]) else None,
        )
        best_results.append(
            TriggerResult(
                trigger=trigger,
                final_balance=float(final_balances[idx]),
                total_payments=total_payments,
            )
        )

    return BestRebalanceTrigger(
        best=best_results[0],
        with_best_dev=best_results[1],
        with_best_interval=best_results[2],
    )


def find_shortest_len(price_devs: Sequence[Sequence[float]]) -> int:
    if not price_devs:
        msg = "no price developments given."
        raise ValueError(msg)
    return min(len(price_dev) for price_dev in price_devs)


def _price_matrix(price_devs: Sequence[Sequence[float]]) -> np.ndarray:
    shortest_len = find_shortest_len(price_devs)
    if shortest_len == 0:
        msg = "price developments cannot be empty."
        raise ValueError(msg)
    matrix = np.column_stack(
        [np.asarray(price_dev[:shortest_len], dtype=float) for price_dev in price_devs]
    )
    if not np.isfinite(matrix).all() or (matrix <= 0.0).any():
        msg = "price developments need to be finite and positive."
        raise ValueError(msg)
    return matrix


def _fractions_array(fractions: Sequence[float], n_assets: int) -> np.ndarray:
    fraction_array = np.asarray(fractions, dtype=float)
    if fraction_array.shape != (n_assets,):
        msg = f"need {n_assets} fractions, one per price development, got {len(fraction_array)}"
        raise ValueError(msg)
    return fraction_array


def _payments_array(
    monthly_payments: MonthlyPayments | None,
    start_date: MonthDate,
    total_months: int,
) -> np.ndarray:
    """Payment per month index; index 0 is the initial investment month and stays 0."""
    payments = np.zeros(total_months + 1)
    if monthly_payments is None:
        return payments
    for step in range(1, total_months + 1):
        payments[step] = monthly_payments.compute(start_date + step, step)
    return payments


def _trigger_hits(
    step: int,
    balances: np.ndarray,
    fractions: np.ndarray,
    intervals: np.ndarray,
    deviations: np.ndarray,
) -> np.ndarray:
    safe_intervals = np.where(intervals > 0, intervals, 1)
    interval_hits = (intervals > 0) & (step % safe_intervals == 0)

    totals = balances.sum(axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        current_fractions = np.where(totals[:, None] > 0.0, balances / totals[:, None], fractions)
    max_deviation = np.abs(current_fractions - fractions).max(axis=1)
    deviation_hits = max_deviation > deviations
    return interval_hits | deviation_hits


def _advance(
    balances: np.ndarray,
    ratios: np.ndarray,
    payments: np.ndarray,
    fractions: np.ndarray,
    step: int,
    intervals: np.ndarray,
    deviations: np.ndarray,
) -> np.ndarray:
    """One month for a batch of portfolios, shapes `(batch, assets)`."""
    balances = balances * ratios + payments[:, None] * fractions
    hits = _trigger_hits(
        step=step,
        balances=balances,
        fractions=fractions,
        intervals=intervals,
        deviations=deviations,
    )
    if hits.any():
        rebalanced = balances.sum(axis=1)[:, None] * fractions
        balances = np.where(hits[:, None], rebalanced, balances)
    return balances


def _run_batch(
    ratios: np.ndarray,
    payments: np.ndarray,
    initial_balance: float,
    fractions: np.ndarray,
    intervals: np.ndarray,
    deviations: np.ndarray,
) -> np.ndarray:
    """Final balances of a batch.

    `ratios` has shape `(batch or 1, steps, assets)`, `payments` has shape
    `(batch or 1, steps)` and the trigger arrays have shape `(batch,)`.
    """
    batch_size = max(ratios.shape[0], payments.shape[0], len(intervals))
    n_steps = ratios.shape[1]
    balances = np.tile(initial_balance * fractions, (batch_size, 1))
    payments = np.broadcast_to(payments, (batch_size, n_steps))
    for step in range(1, n_steps + 1):
        balances = _advance(
            balances=balances,
            ratios=ratios[:, step - 1, :],
            payments=payments[:, step - 1],
            fractions=fractions,
            step=step,
            intervals=intervals,
            deviations=deviations,
        )
    return balances.sum(axis=1)


def _window_payments(
    monthly_payments: MonthlyPayments | None,
    start_date: MonthDate,
    step_payments: np.ndarray,
    n_months: int,
) -> np.ndarray:
    """Payments of all windows of length `n_months`, shape `(windows, n_months)`."""
    if monthly_payments is None or not monthly_payments.uses_months_since_start:
        return np.lib.stride_tricks.sliding_window_view(step_payments, n_months)
    n_windows = len(step_payments) - n_months + 1
    return np.asarray(
        [
            [monthly_payments.compute(start_date + start + k, k) for k in range(1, n_months + 1)]
            for start in range(n_windows)
        ],
        dtype=float,
    )


def _final_without_rebalancing(
    price_matrix: np.ndarray,
    window_payments: np.ndarray,
    initial_balance: float,
    fractions: np.ndarray,
    n_months: int,
) -> np.ndarray:
    """Buy-and-hold final balances for all windows of length `n_months`.

    Every contribution grows with the price development from the month it was
    paid in, so the final value of asset `i` on window `[s, s + n]` is
    `f_i * P_i[s+n] * (B / P_i[s] + sum_{k=1..n} p_{s,k} / P_i[s+k])`.
    """
    starts = np.arange(price_matrix.shape[0] - n_months)
    ends = starts + n_months
    # (windows, assets, n_months), prices of the paying months s+1..s+n
    paying_prices = np.lib.stride_tricks.sliding_window_view(price_matrix[1:], n_months, axis=0)
    contribution = (window_payments[:, None, :] / paying_prices).sum(axis=2)
    per_asset = fractions * price_matrix[ends] * (
        initial_balance / price_matrix[starts] + contribution
    )
    return per_asset.sum(axis=1)


def _summary_row(low: int, high: int, with_reb: float, without_reb: float) -> dict[str, object]:
    factor = with_reb / without_reb if without_reb and not math.isnan(without_reb) else float("nan")
    return {
        "n_months": f"{low:03d} - {high:03d}",
        "w_rebalance": with_reb,
        "wo_rebalance": without_reb,
        "factor": factor,
    }
