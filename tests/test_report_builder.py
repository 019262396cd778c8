from __future__ import annotations

from pathlib import Path

import pytest
from rebalance.core.dates import MonthDate
from rebalance.report import ReportBuilder, format_num, generate_balance_plots, space_sep_1000
from rebalance.session import BalanceSession


@pytest.mark.parametrize(
    ("number_text", "expected"),
    [
        ("1000", "1000"),
        ("432", "432"),
        ("92432", "92 432"),
        ("2192432", "2 192 432"),
        ("192432", "192 432"),
        ("92432.65", "92 432.65"),
        ("92432.659", "92 432.659"),
        ("-92432.5", "-92 432.5"),
    ],
)
def test_space_sep_1000(number_text: str, expected: str) -> None:
    assert space_sep_1000(number_text) == expected


def test_format_num_rounds_to_cents() -> None:
    assert format_num(22500.0) == "22 500.00"
    assert format_num(999.999) == "1000.00"


def test_report_builder_html_contains_key_sections(tmp_path: Path) -> None:
    report_dir = tmp_path / "reports"
    session = BalanceSession()
    for name, values in (
        ("world", [1.0] * 5 + [2.0] * 5 + [4.0] * 5),
        ("em", [1.0] * 15),
    ):
        rows = [f"{MonthDate(2000, 1) + idx},{value}" for idx, value in enumerate(values)]
        assert session.load_csv(name, "Date,Price\n" + "\n".join(rows) + "\n")
        session.persist_tmp()
    session.payment.rebalance_interval_text = "5"
    session.recompute_balance()
    session.recompute_rebalance_stats(always=True)
    session.find_best_rebalance_trigger()

    plot_paths = generate_balance_plots(
        charts=session.charts,
        output_dir=report_dir / "assets",
        prefix="demo",
        initial_balance=session.payment.initial_balance,
        stats=session.rebalance_stats,
    )
    html_path = ReportBuilder(output_dir=report_dir).build(
        session=session,
        plot_paths=list(plot_paths),
        config={"report_name": "demo report", "charts": "world, em"},
        rebalance_stats_df=(
            None if session.rebalance_stats is None else session.rebalance_stats.per_horizon
        ),
    )

    assert html_path == report_dir / "demo_report.html"
    content = html_path.read_text(encoding="utf-8")
    assert "Balance Report" in content
    assert "22 500.00" in content
    assert "25 000.00" in content
    assert "Mean with Rebalancing" in content
    assert "Fraction (%)" in content
    assert "assets/demo_price_developments.png" in content
    assert "Show Session JSON" in content
    assert '<p class="status-error">' not in content


def test_report_builder_shows_status_message(tmp_path: Path) -> None:
    session = BalanceSession()
    session.recompute_balance()

    html_path = ReportBuilder(output_dir=tmp_path).build(
        session=session,
        plot_paths=[],
        config={"report_name": "empty"},
    )

    content = html_path.read_text(encoding="utf-8")
    assert '<p class="status-error">' in content
    assert "Add simulated or historical charts" in content
    assert "No charts in the portfolio." in content
    assert "No charts generated." in content
