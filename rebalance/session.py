"""Application state of a balancing session, persisted as JSON."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from rebalance.core.charts import Chart, Charts, TmpChart
from rebalance.core.compute import (
    BestRebalanceTrigger,
    RebalanceStats,
    RebalanceStatsSummary,
    RebalanceTrigger,
    TriggerResult,
    yearly_return,
)
from rebalance.core.dates import Interval, MonthDate
from rebalance.core.payments import MonthlyPayments
from rebalance.core.simulation import SimInput
from rebalance.io.csv_reader import read_csv_from_str
from rebalance.io.historic import HistoricDataProvider
from rebalance.io.sharelink import ShareLinkClient
from rebalance.ops.logging import JsonEventLogger

DEFAULT_INITIAL_BALANCE = 10000.0
SESSION_ERRORS = (ValueError, RuntimeError, IndexError, OSError)


@dataclass(slots=True)
class MonthlyPaymentState:
    """Payment expressions as typed, optionally restricted to `YYYY/MM` intervals."""

    pay_fields: list[str] = field(default_factory=lambda: ["0.00"])
    intervals: list[tuple[str, str]] = field(default_factory=list)
    payments: MonthlyPayments = field(default_factory=MonthlyPayments.zero)

    def parse(self) -> MonthlyPayments:
        if not self.intervals and len(self.pay_fields) == 1:
            self.payments = MonthlyPayments.from_single_payment(self.pay_fields[0])
        else:
            self.payments = MonthlyPayments.from_intervals(
                self.pay_fields,
                [Interval.from_strs(start, end) for start, end in self.intervals],
            )
        return self.payments

    def to_dict(self) -> dict[str, Any]:
        return {
            "pay_fields": list(self.pay_fields),
            "intervals": [[start, end] for start, end in self.intervals],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MonthlyPaymentState:
        state = cls(
            pay_fields=[str(text) for text in payload.get("pay_fields", ["0.00"])],
            intervals=[(str(start), str(end)) for start, end in payload.get("intervals", [])],
        )
        state.parse()
        return state


@dataclass(slots=True)
class PaymentData:
    """Initial balance, monthly payments and rebalance trigger as typed by the user."""

    initial_balance_text: str = f"{DEFAULT_INITIAL_BALANCE:0.2f}"
    monthly_payments: MonthlyPaymentState = field(default_factory=MonthlyPaymentState)
    rebalance_interval_text: str = ""
    rebalance_deviation_text: str = ""
    initial_balance: float = DEFAULT_INITIAL_BALANCE
    rebalance_interval: int | None = None
    rebalance_deviation: float | None = None

    def parse(self) -> None:
        """Parse all text fields.

        Spaces in the initial balance are ignored, so `10 000` is fine. The
        deviation is given in percent. Interval and deviation texts that are
        empty or invalid disable the respective trigger.
        """
        balance_text = self.initial_balance_text.replace(" ", "")
        try:
            self.initial_balance = float(balance_text)
        except ValueError as error:
            msg = f"could not parse initial balance '{self.initial_balance_text}'"
            raise ValueError(msg) from error
        self.monthly_payments.parse()
        self.rebalance_interval = _parse_optional_int(self.rebalance_interval_text)
        deviation_perc = _parse_optional_float(self.rebalance_deviation_text)
        self.rebalance_deviation = None if deviation_perc is None else deviation_perc / 100.0

    def trigger(self) -> RebalanceTrigger:
        return RebalanceTrigger(
            interval=self.rebalance_interval,
            deviation=self.rebalance_deviation,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_balance": self.initial_balance_text,
            "monthly_payments": self.monthly_payments.to_dict(),
            "rebalance_interval": self.rebalance_interval_text,
            "rebalance_deviation": self.rebalance_deviation_text,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PaymentData:
        payment_data = cls(
            initial_balance_text=str(
                payload.get("initial_balance", f"{DEFAULT_INITIAL_BALANCE:0.2f}")
            ),
            monthly_payments=MonthlyPaymentState.from_dict(payload.get("monthly_payments", {})),
            rebalance_interval_text=str(payload.get("rebalance_interval", "")),
            rebalance_deviation_text=str(payload.get("rebalance_deviation", "")),
        )
        payment_data.parse()
        return payment_data


@dataclass(slots=True)
class FinalBalance:
    final_balance: float
    yearly_return_perc: float | None
    total_payments: float

    @classmethod
    def from_chart(cls, balances: Chart, payments: Chart, n_months: int) -> FinalBalance:
        if not balances.values or not payments.values:
            msg = "cannot compute final balance from empty chart"
            raise ValueError(msg)
        final_balance = balances.values[-1]
        total_payments = payments.values[-1]
        yearly_return_perc, _ = yearly_return(total_payments, n_months, final_balance)
        return cls(
            final_balance=final_balance,
            yearly_return_perc=_finite_or_none(yearly_return_perc),
            total_payments=total_payments,
        )


@dataclass(slots=True)
class BalanceSession:
    """Everything the user set up: simulations, charts, payments and results.

    Operations never raise on bad input. Failures end up in `status_msg`, are
    logged and, if an event logger is attached, written as events.
    """

    sim: SimInput = field(default_factory=SimInput)
    charts: Charts = field(default_factory=Charts)
    payment: PaymentData = field(default_factory=PaymentData)
    status_msg: str | None = None
    final_balance: FinalBalance | None = None
    rebalance_stats_summary: RebalanceStatsSummary | None = None
    best_rebalance_trigger: BestRebalanceTrigger | None = None
    rebalance_stats: RebalanceStats | None = field(default=None, repr=False, compare=False)
    event_logger: JsonEventLogger | None = field(default=None, repr=False, compare=False)
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger(__name__),
        repr=False,
        compare=False,
    )

    def run_simulation(self) -> bool:
        self.rebalance_stats_summary = None
        self.rebalance_stats = None
        try:
            parsed = self.sim.parse()
            chart = Chart(
                name=self.sim.chart_name(),
                dates=parsed.dates(),
                values=parsed.simulate(),
            )
        except SESSION_ERRORS as error:
            return self._fail("simulation", error)
        self._add_tmp(chart)
        self._succeed("simulation", chart=chart.name, n_months=parsed.n_months)
        return True

    def load_historic(self, provider: HistoricDataProvider, preset: str) -> bool:
        try:
            chart = provider.get_chart(preset)
        except SESSION_ERRORS as error:
            return self._fail("historic_download", error)
        self._add_tmp(chart)
        self._succeed("historic_download", chart=chart.name)
        return True

    def load_csv(self, name: str, csv_text: str) -> bool:
        try:
            dates, values = read_csv_from_str(csv_text)
            chart = Chart(name=name, dates=dates, values=values)
        except SESSION_ERRORS as error:
            return self._fail("csv_import", error)
        self._add_tmp(chart)
        self._succeed("csv_import", chart=chart.name)
        return True

    def persist_tmp(self) -> None:
        self.charts.persist_tmp()
        self.final_balance = None

    def set_fraction(self, idx: int, value: float) -> bool:
        try:
            self.charts.set_fraction(idx, value)
        except SESSION_ERRORS as error:
            return self._fail("set_fraction", error)
        return True

    def set_fixed(self, idx: int, is_fixed: bool) -> bool:
        try:
            self.charts.set_fixed(idx, is_fixed)
        except SESSION_ERRORS as error:
            return self._fail("set_fixed", error)
        return True

    def remove_chart(self, idx: int) -> bool:
        try:
            removed = self.charts.remove(idx)
        except SESSION_ERRORS as error:
            return self._fail("remove_chart", error)
        self._succeed("remove_chart", chart=removed.name)
        return True

    def restrict(self, start: MonthDate | None, end: MonthDate | None) -> bool:
        try:
            self.charts.restrict(start, end)
        except SESSION_ERRORS as error:
            return self._fail("restrict", error)
        return True

    def recompute_balance(self) -> FinalBalance | None:
        try:
            self.payment.parse()
            self.charts.compute_balance(
                initial_balance=self.payment.initial_balance,
                monthly_payments=self.payment.monthly_payments.payments,
                rebalance_trigger=self.payment.trigger(),
            )
            balances = self.charts.total_balance_over_month
            payments = self.charts.total_payments_over_month
            if balances is None or payments is None:
                msg = "no portfolio value computed."
                raise ValueError(msg)
            self.final_balance = FinalBalance.from_chart(
                balances=balances,
                payments=payments,
                n_months=self.charts.n_months_persisted(),
            )
        except SESSION_ERRORS as error:
            self.final_balance = None
            self._fail("balance", error)
            return None
        self.charts.plot_balance = True
        self._succeed(
            "balance",
            final_balance=self.final_balance.final_balance,
            total_payments=self.final_balance.total_payments,
            yearly_return_perc=self.final_balance.yearly_return_perc,
        )
        return self.final_balance

    def recompute_rebalance_stats(self, always: bool = True) -> RebalanceStatsSummary | None:
        if self.rebalance_stats_summary is None and not always:
            return None
        try:
            self.payment.parse()
            trigger = self.payment.trigger()
        except SESSION_ERRORS as error:
            self._fail("rebalance_stats", error)
            return None
        if not trigger.is_active:
            self._fail(
                "rebalance_stats",
                ValueError("neither rebalance interval nor deviation given"),
            )
            return None
        try:
            stats = self.charts.compute_rebalance_stats(
                initial_balance=self.payment.initial_balance,
                monthly_payments=self.payment.monthly_payments.payments,
                rebalance_trigger=trigger,
            )
            self.rebalance_stats_summary = stats.mean_across_nmonths()
            self.rebalance_stats = stats
        except SESSION_ERRORS as error:
            self.rebalance_stats_summary = None
            self.rebalance_stats = None
            self._fail("rebalance_stats", error)
            return None
        self._succeed(
            "rebalance_stats",
            mean_w_reb=self.rebalance_stats_summary.mean_across_months_w_reb,
            mean_wo_reb=self.rebalance_stats_summary.mean_across_months_wo_reb,
        )
        return self.rebalance_stats_summary

    def find_best_rebalance_trigger(self) -> BestRebalanceTrigger | None:
        try:
            self.payment.parse()
            self.best_rebalance_trigger = self.charts.find_best_rebalance_trigger(
                initial_balance=self.payment.initial_balance,
                monthly_payments=self.payment.monthly_payments.payments,
            )
        except SESSION_ERRORS as error:
            self.best_rebalance_trigger = None
            self._fail("best_trigger", ValueError(f"could not find best trigger; {error}"))
            return None
        best = self.best_rebalance_trigger.best
        self._succeed(
            "best_trigger",
            interval=best.trigger.interval,
            deviation=best.trigger.deviation,
            final_balance=best.final_balance,
        )
        return self.best_rebalance_trigger

    def reset(self) -> None:
        self.sim = SimInput()
        self.charts = Charts()
        self.payment = PaymentData()
        self.status_msg = None
        self.final_balance = None
        self.rebalance_stats_summary = None
        self.rebalance_stats = None
        self.best_rebalance_trigger = None
        self._emit("info", "reset")

    def export_csv(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.charts.to_csv(), encoding="utf-8")
        self._emit("info", "export_csv", path=output_path)
        return output_path

    def share(self, client: ShareLinkClient) -> str | None:
        try:
            link = client.write(self.to_dict())
        except SESSION_ERRORS as error:
            self._fail("share", error)
            return None
        self._succeed("share", link=link)
        return link

    def load_from_link(self, client: ShareLinkClient, link: str) -> bool:
        try:
            loaded = BalanceSession.from_dict(client.read(link))
        except SESSION_ERRORS as error:
            return self._fail("load_link", error)
        self._replace_state(loaded)
        self._succeed("load_link", link=link)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "sim": self.sim.to_dict(),
            "charts": self.charts.to_dict(),
            "payment": self.payment.to_dict(),
            "status_msg": self.status_msg,
            "final_balance": None if self.final_balance is None else asdict(self.final_balance),
            "rebalance_stats_summary": (
                None
                if self.rebalance_stats_summary is None
                else {
                    key: _finite_or_none(value)
                    for key, value in asdict(self.rebalance_stats_summary).items()
                }
            ),
            "best_rebalance_trigger": (
                None
                if self.best_rebalance_trigger is None
                else _best_trigger_to_dict(self.best_rebalance_trigger)
            ),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> BalanceSession:
        if not isinstance(payload, Mapping):
            msg = "session state must be a JSON object."
            raise ValueError(msg)
        raw_final_balance = payload.get("final_balance")
        raw_summary = payload.get("rebalance_stats_summary")
        raw_best = payload.get("best_rebalance_trigger")
        try:
            return cls(
                sim=SimInput.from_dict(payload.get("sim", {})),
                charts=Charts.from_dict(payload.get("charts", {})),
                payment=PaymentData.from_dict(payload.get("payment", {})),
                status_msg=payload.get("status_msg"),
                final_balance=(
                    None if raw_final_balance is None else FinalBalance(**raw_final_balance)
                ),
                rebalance_stats_summary=(
                    None
                    if raw_summary is None
                    else RebalanceStatsSummary(
                        **{
                            key: math.nan if value is None else value
                            for key, value in raw_summary.items()
                        }
                    )
                ),
                best_rebalance_trigger=(
                    None if raw_best is None else _best_trigger_from_dict(raw_best)
                ),
            )
        except (KeyError, TypeError) as error:
            msg = f"invalid session state: {error}"
            raise ValueError(msg) from error

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, text: str) -> BalanceSession:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as error:
            msg = f"invalid session JSON: {error}"
            raise ValueError(msg) from error
        return cls.from_dict(payload)

    def save(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.to_json(), encoding="utf-8")
        self._emit("info", "save", path=output_path)
        return output_path

    @classmethod
    def load(
        cls,
        path: str | Path,
        event_logger: JsonEventLogger | None = None,
    ) -> BalanceSession:
        input_path = Path(path)
        if not input_path.exists():
            msg = f"Session file not found: {input_path}"
            raise FileNotFoundError(msg)
        session = cls.from_json(input_path.read_text(encoding="utf-8"))
        session.event_logger = event_logger
        session._emit("info", "load", path=input_path)
        return session

    def _add_tmp(self, chart: Chart) -> None:
        self.charts.add_tmp(TmpChart(chart=chart, initial_balance=self.payment.initial_balance))
        self.charts.plot_balance = False

    def _replace_state(self, other: BalanceSession) -> None:
        self.sim = other.sim
        self.charts = other.charts
        self.payment = other.payment
        self.status_msg = other.status_msg
        self.final_balance = other.final_balance
        self.rebalance_stats_summary = other.rebalance_stats_summary
        self.best_rebalance_trigger = other.best_rebalance_trigger
        self.rebalance_stats = None

    def _fail(self, event: str, error: Exception) -> bool:
        self.status_msg = str(error)
        self.logger.warning("%s failed: %s", event, error)
        self._emit("error", event, message=self.status_msg)
        return False

    def _succeed(self, event: str, **fields: Any) -> None:
        self.status_msg = None
        self.logger.info("%s done", event)
        self._emit("info", event, **fields)

    def _emit(self, level: str, event: str, **fields: Any) -> None:
        if self.event_logger is not None:
            self.event_logger.emit(level=level, event=event, **fields)


def _parse_optional_int(text: str) -> int | None:
    try:
        value = int(text.strip())
    except ValueError:
        return None
    return value if value >= 1 else None


def _parse_optional_float(text: str) -> float | None:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0.0 else None


def _finite_or_none(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return float(value)


def _trigger_result_to_dict(result: TriggerResult) -> dict[str, Any]:
    return {
        "interval": result.trigger.interval,
        "deviation": result.trigger.deviation,
        "final_balance": result.final_balance,
        "total_payments": result.total_payments,
    }


def _trigger_result_from_dict(payload: Mapping[str, Any]) -> TriggerResult:
    interval = payload.get("interval")
    deviation = payload.get("deviation")
    return TriggerResult(
        trigger=RebalanceTrigger(
            interval=None if interval is None else int(interval),
            deviation=None if deviation is None else float(deviation),
        ),
        final_balance=float(payload["final_balance"]),
        total_payments=float(payload["total_payments"]),
    )


def _best_trigger_to_dict(best: BestRebalanceTrigger) -> dict[str, Any]:
    return {
        "best": _trigger_result_to_dict(best.best),
        "with_best_dev": _trigger_result_to_dict(best.with_best_dev),
        "with_best_interval": _trigger_result_to_dict(best.with_best_interval),
    }


def _best_trigger_from_dict(payload: Mapping[str, Any]) -> BestRebalanceTrigger:
    return BestRebalanceTrigger(
        best=_trigger_result_from_dict(payload["best"]),
        with_best_dev=_trigger_result_from_dict(payload["with_best_dev"]),
        with_best_interval=_trigger_result_from_dict(payload["with_best_interval"]),
    )
