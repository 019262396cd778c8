from __future__ import annotations

import json
from pathlib import Path

import pytest
from rebalance.cli import (
    build_session,
    compute_balance_with_config,
    load_app_config,
    main,
    run_with_config,
)
from rebalance.core.dates import MonthDate
from rebalance.io.csv_reader import read_csv_from_str

WORLD = [1.0] * 5 + [2.0] * 5 + [4.0] * 5
EMERGING = [1.0] * 15


def test_load_app_config_resolves_paths_and_payments(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path=tmp_path, report_name="config_demo")

    config = load_app_config(config_path)

    assert config.report_name == "config_demo"
    assert config.report_dir == tmp_path / "reports"
    assert config.session_path == config.report_dir / "config_demo_session.json"
    assert config.payment_fields == ["100", "0"]
    assert config.payment_intervals == [("2000/02", "2000/06"), ("2000/07", "2001/03")]
    assert config.rebalance_interval == "5"
    assert config.rebalance_deviation == ""
    assert [source.kind for source in config.charts] == ["csv", "csv"]
    assert config.charts[0].csv_path == (tmp_path / "data" / "world.csv").resolve()
    assert not hasattr(config, "raw_config")


def test_compute_balance_with_config(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path=tmp_path, report_name="balance_demo", payments=False)

    session = compute_balance_with_config(config_path)

    assert session.final_balance is not None
    assert session.final_balance.final_balance == pytest.approx(22500.0)
    assert [chart.name for chart in session.charts.persisted] == ["world", "em"]


def test_build_session_applies_fractions_and_restriction(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path=tmp_path,
        report_name="fraction_demo",
        fractions=(0.7, 0.3),
        extra='start = "2000/02"\n',
    )

    session = build_session(load_app_config(config_path))

    assert session.charts.fractions == pytest.approx([0.7, 0.3])
    assert session.charts.start_end_date(with_tmp=False)[0] == MonthDate(2000, 2)


def test_build_session_rejects_partial_fractions(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path=tmp_path, report_name="partial_demo", fractions=(0.7, None)
    )

    with pytest.raises(ValueError, match="all or none"):
        build_session(load_app_config(config_path))


def test_run_with_config_generates_report_and_session(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path=tmp_path, report_name="run_demo")

    execution = run_with_config(config_path=config_path)

    assert execution.report_path.exists()
    assert execution.session_path.exists()
    assert len(execution.plot_paths) == 3
    content = execution.report_path.read_text(encoding="utf-8")
    assert "Final Balance" in content
    assert "Rebalance Statistics" in content
    assert "Best Rebalance Trigger" in content
    assert "Show Session JSON" in content
    assert "<td>world, em</td>" in content

    payload = json.loads(execution.session_path.read_text(encoding="utf-8"))
    assert payload["best_rebalance_trigger"] is not None
    assert payload["rebalance_stats_summary"]["min_n_months"] == 10


def test_load_app_config_rejects_invalid_configs(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(tmp_path / "missing.toml")

    config_path = tmp_path / "empty.toml"
    config_path.write_text('report_name = "x"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="charts"):
        load_app_config(config_path)

    config_path.write_text('[[charts]]\nsource = "ftp"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="historic, simulation or csv"):
        load_app_config(config_path)


def test_main_simulate_writes_csv(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_path = tmp_path / "sim.csv"

    exit_code = main(
        [
            "simulate",
            "--vola",
            "no",
            "--markovian",
            "--n-months",
            "12",
            "--start",
            "2001/01",
            "--output",
            str(output_path),
        ]
    )

    assert exit_code == 0
    assert "6.0_12_no-vola-varies_mrkv" in capsys.readouterr().out
    dates, values = read_csv_from_str(output_path.read_text(encoding="utf-8"))
    assert dates[0] == MonthDate(2001, 1)
    assert len(values) == 13
    assert values[-1] == pytest.approx(106.0)


def test_main_balance_prints_final_balance(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    config_path = _write_config(tmp_path=tmp_path, report_name="main_demo", payments=False)

    exit_code = main(["balance", "--config", str(config_path)])

    assert exit_code == 0
    assert "Final balance: 22 500.00" in capsys.readouterr().out


def test_main_reports_errors_with_exit_status(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as error:
        main(["balance", "--config", str(tmp_path / "missing.toml")])

    assert error.value.code == 1


def _write_config(
    tmp_path: Path,
    report_name: str,
    payments: bool = True,
    fractions: tuple[float | None, float | None] = (None, None),
    extra: str = "",
) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    _write_sample_csv(data_dir / "world.csv", WORLD)
    _write_sample_csv(data_dir / "em.csv", EMERGING)

    report_dir = tmp_path / "reports"
    config_path = tmp_path / "portfolio.toml"
    config_text = f"""
report_name = "{report_name}"
report_dir = "{report_dir.as_posix()}"
initial_balance = "10 000"
{extra}
[rebalance]
interval = 5
"""
    if payments:
        config_text += """
[[payments]]
amount = "100"
start = "2000/02"
end = "2000/06"

[[payments]]
amount = "0"
start = "2000/07"
end = "2001/03"
"""
    for name, fraction in zip(("world", "em"), fractions, strict=True):
        config_text += f"""
[[charts]]
source = "csv"
name = "{name}"
path = "data/{name}.csv"
"""
        if fraction is not None:
            config_text += f"fraction = {fraction}\n"
    config_path.write_text(config_text.strip() + "\n", encoding="utf-8")
    return config_path


def _write_sample_csv(path: Path, values: list[float]) -> None:
    start = MonthDate(2000, 1)
    rows = [f"{start + idx},{value}" for idx, value in enumerate(values)]
    path.write_text("Date,Price\n" + "\n".join(rows) + "\n", encoding="utf-8")
