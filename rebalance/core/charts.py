"""Price development charts and the portfolio built from them."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import pandas as pd

from rebalance.core.compute import (
    BestRebalanceTrigger,
    RebalanceData,
    RebalanceStats,
    RebalanceTrigger,
    adapt_pricedev_to_initial_balance,
    best_rebalance_trigger,
    compute_balance_over_months,
    rebalance_stats,
    unzip_balance_iter,
)
from rebalance.core.dates import MonthDate, fill_between
from rebalance.core.fractions import add_fraction, normalize_fractions, redistribute_fractions
from rebalance.core.payments import MonthlyPayments

T = TypeVar("T")

BALANCE_CHART_NAME = "portfolio value"
PAYMENTS_CHART_NAME = "total payments"
NO_CHARTS_MESSAGE = "Add simulated or historical charts to compute your portfolio development"


def slice_by_date(
    dates: Sequence[MonthDate],
    start_date: MonthDate,
    end_date: MonthDate,
    to_be_sliced: Sequence[T],
) -> list[T]:
    """Slice from the first date >= `start_date` to the first date >= `end_date`, inclusive."""
    start_idx = next((idx for idx, date in enumerate(dates) if date >= start_date), None)
    if start_idx is None:
        msg = f"slice by date - could not find start idx of {start_date}"
        raise ValueError(msg)
    end_idx = next((idx for idx, date in enumerate(dates) if date >= end_date), None)
    if end_idx is None:
        msg = f"slice by date - could not find end idx of {end_date}"
        raise ValueError(msg)
    return list(to_be_sliced[start_idx : end_idx + 1])


def start_end_date(charts: Iterable[Chart]) -> tuple[MonthDate, MonthDate]:
    """Intersect the timelines of all charts."""
    chart_list = list(charts)
    if not chart_list:
        raise ValueError(NO_CHARTS_MESSAGE)
    start_date = max(
        chart.dates[0] if chart.dates else MonthDate(1, 1) for chart in chart_list
    )
    end_date = min(
        chart.dates[-1] if chart.dates else MonthDate(9999, 12) for chart in chart_list
    )
    if end_date <= start_date:
        msg = "start date needs to be strictly before end date"
        raise ValueError(msg)
    return start_date, end_date


@dataclass(slots=True)
class Chart:
    """Named monthly values, usually a price development."""

    name: str
    dates: list[MonthDate]
    values: list[float]

    def __post_init__(self) -> None:
        if len(self.dates) != len(self.values):
            msg = (
                f"chart '{self.name}' has {len(self.dates)} dates "
                f"but {len(self.values)} values"
            )
            raise ValueError(msg)

    def sliced_values(self, start_date: MonthDate, end_date: MonthDate) -> list[float]:
        return slice_by_date(self.dates, start_date, end_date, self.values)

    def sliced_dates(self, start_date: MonthDate, end_date: MonthDate) -> list[MonthDate]:
        return slice_by_date(self.dates, start_date, end_date, self.dates)

    def values_between_dates(
        self,
        start_date: MonthDate,
        end_date: MonthDate,
        initial_balance: float | None = None,
    ) -> list[float]:
        sliced_values = self.sliced_values(start_date, end_date)
        if initial_balance is None:
            return sliced_values
        return adapt_pricedev_to_initial_balance(initial_balance, sliced_values)

    def to_series(self) -> pd.Series:
        return pd.Series(
            self.values,
            index=[str(date) for date in self.dates],
            name=self.name,
            dtype=float,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "dates": [str(date) for date in self.dates],
            "values": list(self.values),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Chart:
        return cls(
            name=str(payload["name"]),
            dates=[MonthDate.from_str(str(date)) for date in payload["dates"]],
            values=[float(value) for value in payload["values"]],
        )


@dataclass(slots=True)
class TmpChart:
    """Chart that was simulated or downloaded but not yet added to the portfolio."""

    chart: Chart
    initial_balance: float

    def to_dict(self) -> dict[str, Any]:
        return {"chart": self.chart.to_dict(), "initial_balance": self.initial_balance}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TmpChart:
        return cls(
            chart=Chart.from_dict(payload["chart"]),
            initial_balance=float(payload["initial_balance"]),
        )


@dataclass(slots=True)
class Charts:
    """Portfolio of persisted charts with their target fractions."""

    tmp: TmpChart | None = None
    persisted: list[Chart] = field(default_factory=list)
    fractions: list[float] = field(default_factory=list)
    fractions_fixed: list[bool] = field(default_factory=list)
    total_balance_over_month: Chart | None = None
    total_payments_over_month: Chart | None = None
    plot_balance: bool = False
    user_start: MonthDate | None = None
    user_end: MonthDate | None = None

    def add_tmp(self, tmp: TmpChart | None) -> None:
        if tmp is None:
            self.tmp = None
            return
        tmp.chart.name = self._adapt_name(tmp.chart.name)
        self.tmp = tmp
        self.user_start = None
        self.user_end = None

    def move_tmp(self) -> TmpChart | None:
        tmp = self.tmp
        self.tmp = None
        return tmp

    def persist_tmp(self) -> None:
        tmp = self.tmp
        if tmp is None or not tmp.chart.dates:
            return
        self.tmp = None
        self.persisted.append(
            Chart(
                name=self._adapt_name(tmp.chart.name),
                dates=tmp.chart.dates,
                values=tmp.chart.values,
            )
        )
        self.fractions = add_fraction(self.fractions)
        self.fractions_fixed.append(False)

    def remove(self, idx: int) -> Chart:
        if not 0 <= idx < len(self.persisted):
            msg = f"no chart with index {idx}, have {len(self.persisted)}"
            raise IndexError(msg)
        removed = self.persisted.pop(idx)
        self.fractions_fixed.pop(idx)
        removed_fraction = self.fractions.pop(idx)
        self.fractions = redistribute_fractions(self.fractions, removed_fraction)
        if len(self.persisted) < 3:
            # with two or less charts fixing a fraction would fix all of them
            self.fractions_fixed = [False] * len(self.fractions_fixed)
        return removed

    def set_fraction(self, idx: int, value: float) -> None:
        if not 0 <= idx < len(self.fractions):
            msg = f"no fraction with index {idx}, have {len(self.fractions)}"
            raise IndexError(msg)
        updated = list(self.fractions)
        updated[idx] = float(value)
        self.fractions = normalize_fractions(updated, idx, self.fractions_fixed)

    def set_fixed(self, idx: int, is_fixed: bool) -> None:
        if not 0 <= idx < len(self.fractions_fixed):
            msg = f"no fraction with index {idx}, have {len(self.fractions_fixed)}"
            raise IndexError(msg)
        self.fractions_fixed[idx] = bool(is_fixed)

    def restrict(self, start: MonthDate | None, end: MonthDate | None) -> None:
        """Restrict computations to `[start, end]`; `None` keeps the chart bounds."""
        if start is not None and end is not None and end <= start:
            msg = f"restriction start {start} needs to be before end {end}"
            raise ValueError(msg)
        self.user_start = start
        self.user_end = end

    def start_end_date(self, with_tmp: bool) -> tuple[MonthDate, MonthDate]:
        charts = list(self.persisted)
        if with_tmp and self.tmp is not None:
            charts.append(self.tmp.chart)
        start, end = start_end_date(charts)
        if self.user_start is not None:
            start = max(start, self.user_start)
        if self.user_end is not None:
            end = min(end, self.user_end)
        if start >= end:
            msg = "start needs to be before end"
            raise ValueError(msg)
        return start, end

    def dates(self, with_tmp: bool) -> list[MonthDate]:
        start, end = self.start_end_date(with_tmp)
        return fill_between(start, end)

    def n_months_persisted(self) -> int:
        start, end = self.start_end_date(False)
        return start.n_months_until(end)

    def compute_balance(
        self,
        initial_balance: float,
        monthly_payments: MonthlyPayments,
        rebalance_trigger: RebalanceTrigger,
    ) -> Chart:
        start_date, end_date = self.start_end_date(False)
        price_devs = self._gather_compute_data(start_date, end_date)
        balances, payments = unzip_balance_iter(
            compute_balance_over_months(
                price_devs=price_devs,
                initial_balance=initial_balance,
                monthly_payments=monthly_payments,
                rebalance_data=RebalanceData(trigger=rebalance_trigger, fractions=self.fractions),
                start_date=start_date,
            )
        )
        dates = self.persisted[0].sliced_dates(start_date, end_date)[: len(balances)]
        self.total_balance_over_month = Chart(BALANCE_CHART_NAME, dates, balances)
        self.total_payments_over_month = Chart(PAYMENTS_CHART_NAME, list(dates), payments)
        return self.total_balance_over_month

    def compute_rebalance_stats(
        self,
        initial_balance: float,
        monthly_payments: MonthlyPayments,
        rebalance_trigger: RebalanceTrigger,
    ) -> RebalanceStats:
        start_date, end_date = self.start_end_date(False)
        return rebalance_stats(
            price_devs=self._gather_compute_data(start_date, end_date),
            initial_balance=initial_balance,
            monthly_payments=monthly_payments,
            rebalance_data=RebalanceData(trigger=rebalance_trigger, fractions=self.fractions),
            start_date=start_date,
        )

    def find_best_rebalance_trigger(
        self,
        initial_balance: float,
        monthly_payments: MonthlyPayments,
    ) -> BestRebalanceTrigger:
        start_date, end_date = self.start_end_date(False)
        return best_rebalance_trigger(
            price_devs=self._gather_compute_data(start_date, end_date),
            initial_balance=initial_balance,
            monthly_payments=monthly_payments,
            fractions=self.fractions,
            start_date=start_date,
        )

    def to_csv(self) -> str:
        """Dates in the first line, then one line per chart, the tmp chart first."""
        dates = self.dates(True)
        start, end = dates[0], dates[-1]
        initial_balance = self.tmp.initial_balance if self.tmp is not None else None

        lines = ["".join(f",{date}" for date in dates)]
        if self.tmp is not None:
            tmp_values = self.tmp.chart.values_between_dates(start, end, initial_balance)
            lines.append(_csv_line(self.tmp.chart.name, tmp_values))
        for chart in self.persisted:
            values = chart.values_between_dates(start, end, initial_balance)
            lines.append(_csv_line(chart.name, values))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tmp": None if self.tmp is None else self.tmp.to_dict(),
            "persisted": [chart.to_dict() for chart in self.persisted],
            "fractions": list(self.fractions),
            "fractions_fixed": list(self.fractions_fixed),
            "total_balance_over_month": (
                None
                if self.total_balance_over_month is None
                else self.total_balance_over_month.to_dict()
            ),
            "total_payments_over_month": (
                None
                if self.total_payments_over_month is None
                else self.total_payments_over_month.to_dict()
            ),
            "plot_balance": self.plot_balance,
            "user_start": None if self.user_start is None else str(self.user_start),
            "user_end": None if self.user_end is None else str(self.user_end),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Charts:
        persisted = [Chart.from_dict(item) for item in payload.get("persisted", [])]
        fractions = [float(value) for value in payload.get("fractions", [])]
        fractions_fixed = [bool(value) for value in payload.get("fractions_fixed", [])]
        if len(fractions) != len(persisted) or len(fractions_fixed) != len(persisted):
            msg = "charts payload needs one fraction and one fixed flag per persisted chart"
            raise ValueError(msg)

        def optional_chart(key: str) -> Chart | None:
            raw_chart = payload.get(key)
            return None if raw_chart is None else Chart.from_dict(raw_chart)

        def optional_date(key: str) -> MonthDate | None:
            raw_date = payload.get(key)
            return None if raw_date is None else MonthDate.from_str(str(raw_date))

        raw_tmp = payload.get("tmp")
        return cls(
            tmp=None if raw_tmp is None else TmpChart.from_dict(raw_tmp),
            persisted=persisted,
            fractions=fractions,
            fractions_fixed=fractions_fixed,
            total_balance_over_month=optional_chart("total_balance_over_month"),
            total_payments_over_month=optional_chart("total_payments_over_month"),
            plot_balance=bool(payload.get("plot_balance", False)),
            user_start=optional_date("user_start"),
            user_end=optional_date("user_end"),
        )

    def _adapt_name(self, name: str) -> str:
        if any(chart.name == name for chart in self.persisted):
            return f"{name}_{len(self.persisted)}"
        return name

    def _gather_compute_data(
        self,
        start_date: MonthDate,
        end_date: MonthDate,
    ) -> list[list[float]]:
        return [chart.sliced_values(start_date, end_date) for chart in self.persisted]


def _csv_line(name: str, values: Iterable[float]) -> str:
    return name + "".join(f",{value}" for value in values)
