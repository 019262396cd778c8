from __future__ import annotations

import pytest
from rebalance.core.charts import (
    BALANCE_CHART_NAME,
    PAYMENTS_CHART_NAME,
    Chart,
    Charts,
    TmpChart,
    slice_by_date,
    start_end_date,
)
from rebalance.core.compute import RebalanceTrigger
from rebalance.core.dates import MonthDate, date_after_n_months
from rebalance.core.payments import MonthlyPayments

WORLD = [1.0] * 5 + [2.0] * 5 + [4.0] * 5
EMERGING = [1.0] * 15


def _chart(name: str, start: str, values: list[float]) -> Chart:
    start_date = MonthDate.from_str(start)
    return Chart(
        name=name,
        dates=[date_after_n_months(start_date, idx) for idx in range(len(values))],
        values=list(values),
    )


def _persist(charts: Charts, chart: Chart, initial_balance: float = 1.0) -> None:
    charts.add_tmp(TmpChart(chart=chart, initial_balance=initial_balance))
    charts.persist_tmp()


def test_slice_by_date_is_inclusive() -> None:
    chart = _chart("a", "2000/01", [1.0, 2.0, 3.0, 4.0])

    assert slice_by_date(chart.dates, MonthDate(2000, 2), MonthDate(2000, 3), chart.values) == [
        2.0,
        3.0,
    ]
    with pytest.raises(ValueError, match="start idx"):
        chart.sliced_values(MonthDate(2001, 1), MonthDate(2001, 2))


def test_start_end_date_intersects_charts() -> None:
    first = _chart("a", "2000/01", [1.0] * 6)
    second = _chart("b", "2000/03", [1.0] * 12)

    assert start_end_date([first, second]) == (MonthDate(2000, 3), MonthDate(2000, 6))
    with pytest.raises(ValueError, match="Add simulated or historical charts"):
        start_end_date([])
    with pytest.raises(ValueError, match="strictly before"):
        start_end_date([first, _chart("c", "2000/06", [1.0] * 3)])


def test_chart_rejects_length_mismatch() -> None:
    with pytest.raises(ValueError, match="3 dates but 2 values"):
        Chart(name="a", dates=[MonthDate(2000, month) for month in (1, 2, 3)], values=[1.0, 2.0])


def test_persist_tmp_adds_fraction_and_adapts_name() -> None:
    charts = Charts()
    _persist(charts, _chart("a", "2000/01", [1.0] * 4))
    assert charts.tmp is None
    assert charts.fractions == pytest.approx([1.0])
    assert charts.fractions_fixed == [False]

    charts.add_tmp(TmpChart(chart=_chart("a", "2000/01", [1.0] * 4), initial_balance=1.0))
    assert charts.tmp is not None
    assert charts.tmp.chart.name == "a_1"
    charts.persist_tmp()

    assert [chart.name for chart in charts.persisted] == ["a", "a_1"]
    assert charts.fractions == pytest.approx([0.5, 0.5])


def test_persist_tmp_without_tmp_is_a_no_op() -> None:
    charts = Charts()
    charts.persist_tmp()

    assert charts.persisted == []
    assert charts.fractions == []


def test_remove_redistributes_fraction_and_unfixes_with_two_charts_left() -> None:
    charts = Charts()
    for name in ("a", "b", "c"):
        _persist(charts, _chart(name, "2000/01", [1.0] * 4))
    charts.set_fixed(1, True)

    removed = charts.remove(0)

    assert removed.name == "a"
    assert [chart.name for chart in charts.persisted] == ["b", "c"]
    assert sum(charts.fractions) == pytest.approx(1.0)
    assert charts.fractions_fixed == [False, False]
    with pytest.raises(IndexError):
        charts.remove(5)


def test_set_fraction_respects_fixed_fractions() -> None:
    charts = Charts()
    for name in ("a", "b", "c"):
        _persist(charts, _chart(name, "2000/01", [1.0] * 4))
    charts.fractions = [0.1, 0.3, 0.6]
    charts.set_fixed(1, True)

    charts.set_fraction(2, 0.9)

    assert charts.fractions == pytest.approx([0.0, 0.3, 0.7])
    with pytest.raises(IndexError):
        charts.set_fraction(3, 0.5)


def test_restrict_clamps_to_chart_timeline() -> None:
    charts = Charts()
    _persist(charts, _chart("a", "2000/01", [1.0] * 24))

    charts.restrict(MonthDate(2000, 6), MonthDate(2005, 1))
    assert charts.start_end_date(with_tmp=False) == (MonthDate(2000, 6), MonthDate(2001, 12))
    assert charts.n_months_persisted() == 18

    with pytest.raises(ValueError, match="before end"):
        charts.restrict(MonthDate(2000, 6), MonthDate(2000, 6))

    charts.add_tmp(TmpChart(chart=_chart("b", "2000/01", [1.0] * 24), initial_balance=1.0))
    assert charts.user_start is None
    assert charts.user_end is None


def test_compute_balance_produces_balance_and_payment_charts() -> None:
    charts = Charts()
    _persist(charts, _chart("world", "2000/01", WORLD))
    _persist(charts, _chart("em", "2000/01", EMERGING))

    balance_chart = charts.compute_balance(
        initial_balance=1.0,
        monthly_payments=MonthlyPayments.zero(),
        rebalance_trigger=RebalanceTrigger(interval=5),
    )

    assert balance_chart.name == BALANCE_CHART_NAME
    assert balance_chart.values[-1] == pytest.approx(2.25)
    assert len(balance_chart.dates) == 15
    assert charts.total_payments_over_month is not None
    assert charts.total_payments_over_month.name == PAYMENTS_CHART_NAME
    assert charts.total_payments_over_month.values[-1] == pytest.approx(1.0)


def test_compute_balance_uses_restricted_timeline() -> None:
    charts = Charts()
    _persist(charts, _chart("world", "2000/01", WORLD))
    charts.restrict(MonthDate(2000, 5), MonthDate(2000, 10))

    balance_chart = charts.compute_balance(
        initial_balance=1.0,
        monthly_payments=MonthlyPayments.zero(),
        rebalance_trigger=RebalanceTrigger(),
    )

    assert balance_chart.dates[0] == MonthDate(2000, 5)
    assert balance_chart.values == pytest.approx([1.0, 2.0, 2.0, 2.0, 2.0, 2.0])


def test_to_csv_writes_dates_line_and_one_line_per_chart() -> None:
    charts = Charts()
    _persist(charts, _chart("a", "2000/01", [1.0, 2.0, 3.0]))
    _persist(charts, _chart("b", "2000/02", [10.0, 20.0, 30.0]))

    assert charts.to_csv() == ",2000/02,2000/03\na,2.0,3.0\nb,10.0,20.0"


def test_to_csv_puts_tmp_first_and_rebases_to_its_initial_balance() -> None:
    charts = Charts()
    _persist(charts, _chart("a", "2000/01", [1.0, 2.0, 4.0]))
    charts.add_tmp(TmpChart(chart=_chart("t", "2000/01", [5.0, 5.0, 10.0]), initial_balance=100.0))

    lines = charts.to_csv().split("\n")

    assert lines[0] == ",2000/01,2000/02,2000/03"
    assert lines[1] == "t,100.0,100.0,200.0"
    assert lines[2] == "a,100.0,200.0,400.0"


def test_charts_dict_round_trip() -> None:
    charts = Charts()
    _persist(charts, _chart("a", "2000/01", [1.0, 2.0, 3.0]))
    charts.add_tmp(TmpChart(chart=_chart("t", "2000/01", [5.0, 5.0, 10.0]), initial_balance=10.0))
    charts.restrict(MonthDate(2000, 2), None)

    restored = Charts.from_dict(charts.to_dict())

    assert restored == charts
