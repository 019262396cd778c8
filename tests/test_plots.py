from __future__ import annotations

from pathlib import Path

import pytest
from rebalance.core.charts import Chart, Charts, TmpChart
from rebalance.core.compute import RebalanceTrigger
from rebalance.core.dates import MonthDate, date_after_n_months
from rebalance.core.payments import MonthlyPayments
from rebalance.report.plots import generate_balance_plots


def _charts() -> Charts:
    charts = Charts()
    for name, growth in (("stocks", 1.01), ("bonds", 1.002)):
        values = [100.0 * growth**month for month in range(36)]
        charts.add_tmp(
            TmpChart(
                chart=Chart(
                    name=name,
                    dates=[date_after_n_months(MonthDate(2010, 1), idx) for idx in range(36)],
                    values=values,
                ),
                initial_balance=1000.0,
            )
        )
        charts.persist_tmp()
    return charts


def test_generate_balance_plots_writes_price_developments_only_before_compute(
    tmp_path: Path,
) -> None:
    image_paths = generate_balance_plots(
        charts=_charts(),
        output_dir=tmp_path / "assets",
        prefix="test_run",
    )

    assert [path.name for path in image_paths] == ["test_run_price_developments.png"]
    assert image_paths[0].stat().st_size > 0


def test_generate_balance_plots_writes_three_png_files(tmp_path: Path) -> None:
    charts = _charts()
    trigger = RebalanceTrigger(interval=6)
    charts.compute_balance(
        initial_balance=1000.0,
        monthly_payments=MonthlyPayments.from_single_payment("50"),
        rebalance_trigger=trigger,
    )
    stats = charts.compute_rebalance_stats(
        initial_balance=1000.0,
        monthly_payments=MonthlyPayments.from_single_payment("50"),
        rebalance_trigger=trigger,
    )

    image_paths = generate_balance_plots(
        charts=charts,
        output_dir=tmp_path / "assets",
        prefix="test_run",
        initial_balance=1000.0,
        stats=stats,
    )

    assert len(image_paths) == 3
    for image_path in image_paths:
        assert image_path.suffix == ".png"
        assert image_path.exists()
        assert image_path.stat().st_size > 0


def test_generate_balance_plots_needs_charts(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="no charts"):
        generate_balance_plots(charts=Charts(), output_dir=tmp_path / "assets")
