"""Command-line interface for rebalance."""

from __future__ import annotations

import argparse
import math
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, cast

import pandas as pd

from rebalance.core.dates import MonthDate
from rebalance.core.simulation import VOLA_LEVELS, SimInput, Vola, VolaAmount
from rebalance.io.historic import BASE_URL, HistoricDataProvider
from rebalance.io.sharelink import ShareLinkClient
from rebalance.ops.logging import JsonEventLogger
from rebalance.report import ReportBuilder, format_num, generate_balance_plots
from rebalance.session import BalanceSession, MonthlyPaymentState, PaymentData

ChartSourceKind = Literal["historic", "simulation", "csv"]
FRACTION_TOLERANCE = 1e-6


@dataclass(slots=True)
class ChartSource:
    """One `[[charts]]` entry of a portfolio config."""

    kind: ChartSourceKind
    name: str | None = None
    preset: str | None = None
    csv_path: Path | None = None
    sim_input: SimInput | None = None
    fraction: float | None = None


@dataclass(slots=True)
class AppConfig:
    """Portfolio configuration used by `balance`, `stats`, `best-trigger` and `run`."""

    report_name: str
    report_dir: Path
    session_path: Path
    events_path: Path | None
    cache_dir: Path
    base_url: str
    initial_balance: str
    payment_fields: list[str]
    payment_intervals: list[tuple[str, str]]
    rebalance_interval: str
    rebalance_deviation: str
    start: MonthDate | None
    end: MonthDate | None
    find_best_trigger: bool
    charts: list[ChartSource] = field(default_factory=list)


@dataclass(slots=True)
class RunExecution:
    """Outputs of one full `run`."""

    report_path: Path
    session_path: Path
    plot_paths: list[Path]


def load_app_config(config_path: Path) -> AppConfig:
    """Load and validate a portfolio config from TOML."""
    if not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("rb") as config_file:
        raw_config = tomllib.load(config_file)

    charts_raw = raw_config.get("charts")
    if not isinstance(charts_raw, list) or not charts_raw:
        msg = "config needs at least one `[[charts]]` entry."
        raise ValueError(msg)

    base_dir = config_path.parent
    report_dir = _resolve_path(
        base_dir=base_dir, raw_path=str(raw_config.get("report_dir", "reports"))
    )
    report_name = str(raw_config.get("report_name", config_path.stem))

    session_raw = raw_config.get("session_path")
    session_path = (
        report_dir / f"{report_name}_session.json"
        if session_raw is None
        else _resolve_path(base_dir=base_dir, raw_path=str(session_raw))
    )
    events_raw = raw_config.get("events_path")
    events_path = (
        None if events_raw is None else _resolve_path(base_dir=base_dir, raw_path=str(events_raw))
    )
    cache_dir = _resolve_path(
        base_dir=base_dir, raw_path=str(raw_config.get("cache_dir", "data/cache"))
    )

    rebalance_interval, rebalance_deviation, find_best_trigger = _parse_rebalance_config(
        raw_config
    )
    payment_fields, payment_intervals = _parse_payments_config(raw_config)

    return AppConfig(
        report_name=report_name,
        report_dir=report_dir,
        session_path=session_path,
        events_path=events_path,
        cache_dir=cache_dir,
        base_url=str(raw_config.get("base_url", BASE_URL)),
        initial_balance=str(raw_config.get("initial_balance", "10000")),
        payment_fields=payment_fields,
        payment_intervals=payment_intervals,
        rebalance_interval=rebalance_interval,
        rebalance_deviation=rebalance_deviation,
        start=_as_optional_month(raw_config.get("start"), key="start"),
        end=_as_optional_month(raw_config.get("end"), key="end"),
        find_best_trigger=find_best_trigger,
        charts=[
            _parse_chart_source(chart_raw, base_dir=base_dir, position=position)
            for position, chart_raw in enumerate(charts_raw)
        ],
    )


def build_session(
    config: AppConfig,
    provider: HistoricDataProvider | None = None,
) -> BalanceSession:
    """Assemble a session with all configured charts persisted."""
    event_logger = JsonEventLogger(config.events_path) if config.events_path else None
    session = BalanceSession(event_logger=event_logger)
    session.payment = PaymentData(
        initial_balance_text=config.initial_balance,
        monthly_payments=MonthlyPaymentState(
            pay_fields=list(config.payment_fields),
            intervals=list(config.payment_intervals),
        ),
        rebalance_interval_text=config.rebalance_interval,
        rebalance_deviation_text=config.rebalance_deviation,
    )
    session.payment.parse()

    resolved_provider = provider
    for source in config.charts:
        if source.kind == "historic":
            if resolved_provider is None:
                resolved_provider = HistoricDataProvider(
                    base_url=config.base_url,
                    cache_dir=config.cache_dir,
                )
            added = session.load_historic(resolved_provider, str(source.preset))
        elif source.kind == "simulation":
            session.sim = source.sim_input or SimInput()
            added = session.run_simulation()
        else:
            csv_path = cast(Path, source.csv_path)
            if not csv_path.exists():
                msg = f"CSV file not found: {csv_path}"
                raise FileNotFoundError(msg)
            added = session.load_csv(
                name=source.name or csv_path.stem,
                csv_text=csv_path.read_text(encoding="utf-8"),
            )
        if not added:
            raise RuntimeError(str(session.status_msg))
        if source.kind == "historic" and source.name and session.charts.tmp is not None:
            session.charts.tmp.chart.name = source.name
        session.persist_tmp()

    fractions = [source.fraction for source in config.charts]
    if any(fraction is not None for fraction in fractions):
        if any(fraction is None for fraction in fractions):
            msg = "either all or none of the `[[charts]]` entries need a `fraction`."
            raise ValueError(msg)
        resolved_fractions = [float(cast(float, fraction)) for fraction in fractions]
        if abs(sum(resolved_fractions) - 1.0) > FRACTION_TOLERANCE:
            msg = f"chart fractions need to sum up to 1, got {sum(resolved_fractions)}"
            raise ValueError(msg)
        session.charts.fractions = resolved_fractions

    if (config.start is not None or config.end is not None) and not session.restrict(
        config.start, config.end
    ):
        raise RuntimeError(str(session.status_msg))
    return session


def compute_balance_with_config(config_path: Path) -> BalanceSession:
    session = build_session(load_app_config(config_path))
    if session.recompute_balance() is None:
        raise RuntimeError(str(session.status_msg))
    return session


def compute_stats_with_config(config_path: Path) -> BalanceSession:
    session = build_session(load_app_config(config_path))
    if session.recompute_rebalance_stats(always=True) is None:
        raise RuntimeError(str(session.status_msg))
    return session


def find_best_trigger_with_config(config_path: Path) -> BalanceSession:
    session = build_session(load_app_config(config_path))
    if session.find_best_rebalance_trigger() is None:
        raise RuntimeError(str(session.status_msg))
    return session


def run_with_config(config_path: Path) -> RunExecution:
    """Compute everything a config asks for and write session, plots and report."""
    config = load_app_config(config_path)
    session = build_session(config)
    return _run_session(
        session=session,
        report_name=config.report_name,
        report_dir=config.report_dir,
        session_path=config.session_path,
        find_best_trigger=config.find_best_trigger,
        report_config=_config_for_report(config),
    )


def run_demo(output_path: Path, seed: int = 42) -> Path:
    """Run a two asset portfolio of simulated charts and generate a report."""
    session = BalanceSession()
    session.payment = PaymentData(
        initial_balance_text="10 000",
        monthly_payments=MonthlyPaymentState(pay_fields=["100"]),
        rebalance_interval_text="12",
        rebalance_deviation_text="",
    )
    demo_inputs = [
        SimInput(
            vola=Vola(amount="mid"),
            expected_yearly_return="7.0",
            n_months="240",
            start_month="2000/01",
            name="stocks",
            crashes=["2008/10"],
            seed=seed,
        ),
        SimInput(
            vola=Vola(amount="low"),
            expected_yearly_return="2.0",
            is_eyr_markovian=True,
            n_months="240",
            start_month="2000/01",
            name="bonds",
            seed=seed + 1,
        ),
    ]
    for sim_input in demo_inputs:
        session.sim = sim_input
        if not session.run_simulation():
            raise RuntimeError(str(session.status_msg))
        session.persist_tmp()
    session.set_fraction(0, 0.6)

    execution = _run_session(
        session=session,
        report_name=output_path.stem,
        report_dir=output_path.parent,
        session_path=output_path.with_suffix(".json"),
        find_best_trigger=True,
        report_config={
            "report_name": output_path.stem,
            "seed": seed,
            "charts": ", ".join(chart.name for chart in session.charts.persisted),
        },
    )
    return execution.report_path


def export_csv_with_config(config_path: Path, output_path: Path) -> Path:
    session = build_session(load_app_config(config_path))
    return session.export_csv(output_path)


def simulate_to_csv(sim_input: SimInput, output_path: Path) -> Path:
    """Write one simulated price development as `date,value` CSV."""
    parsed = sim_input.parse()
    frame = pd.DataFrame(
        {
            "date": [str(date) for date in parsed.dates()],
            "value": parsed.simulate(),
        }
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output_path, index=False)
    return output_path


def share_session(session_path: Path, client: ShareLinkClient | None = None) -> str:
    session = BalanceSession.load(session_path)
    link = session.share(client or ShareLinkClient())
    if link is None:
        raise RuntimeError(str(session.status_msg))
    return link


def load_shared_session(
    link: str,
    output_path: Path,
    client: ShareLinkClient | None = None,
) -> Path:
    session = BalanceSession()
    if not session.load_from_link(client or ShareLinkClient(), link):
        raise RuntimeError(str(session.status_msg))
    return session.save(output_path)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        prog="rebalance",
        description="Simulate portfolios and analyse rebalancing strategies.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser(
        "simulate", help="Simulate one price development and write it as CSV."
    )
    simulate_parser.add_argument(
        "--return",
        dest="expected_yearly_return",
        default="6.0",
        help="Expected yearly return in percent. Default: 6.0",
    )
    simulate_parser.add_argument(
        "--n-months",
        default="360",
        help="Number of simulated months. Default: 360",
    )
    simulate_parser.add_argument(
        "--start",
        default="2010/01",
        help="First month, YYYY/MM. Default: 2010/01",
    )
    simulate_parser.add_argument(
        "--vola",
        choices=sorted(VOLA_LEVELS),
        default="mid",
        help="Volatility level. Default: mid",
    )
    simulate_parser.add_argument(
        "--no-smoothing",
        action="store_true",
        help="Redraw the volatility every month instead of yearly.",
    )
    simulate_parser.add_argument(
        "--markovian",
        action="store_true",
        help="Disable the pull back towards the expected trajectory.",
    )
    simulate_parser.add_argument(
        "--crash",
        action="append",
        default=[],
        help="Month YYYY/MM in which prices halve. Can be repeated.",
    )
    simulate_parser.add_argument("--seed", type=int, default=None, help="Random seed.")
    simulate_parser.add_argument("--name", default="", help="Chart name.")
    simulate_parser.add_argument(
        "--output",
        default="reports/simulation.csv",
        help="Output CSV path. Default: reports/simulation.csv",
    )

    for command, help_text in (
        ("balance", "Compute the final balance of a portfolio config."),
        ("stats", "Compare rebalancing against buy-and-hold on all time windows."),
        ("best-trigger", "Search the best rebalance interval and deviation."),
        ("run", "Compute everything and generate an HTML report."),
    ):
        command_parser = subparsers.add_parser(command, help=help_text)
        command_parser.add_argument("--config", required=True, help="Path to portfolio.toml")

    export_parser = subparsers.add_parser(
        "export-csv", help="Export all charts of a portfolio config as CSV."
    )
    export_parser.add_argument("--config", required=True, help="Path to portfolio.toml")
    export_parser.add_argument(
        "--output",
        default="reports/charts.csv",
        help="Output CSV path. Default: reports/charts.csv",
    )

    share_parser = subparsers.add_parser("share", help="Upload a saved session and print its link.")
    share_parser.add_argument("--session", required=True, help="Path to a session JSON file.")

    load_parser = subparsers.add_parser("load", help="Download a shared session.")
    load_parser.add_argument("link", help="Share link or session id.")
    load_parser.add_argument(
        "--output",
        default="reports/session.json",
        help="Output session JSON path. Default: reports/session.json",
    )

    demo_parser = subparsers.add_parser("demo", help="Run a simulated demo portfolio.")
    demo_parser.add_argument(
        "--output",
        default="reports/demo.html",
        help="Output HTML report path. Default: reports/demo.html",
    )
    demo_parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for the simulations. Default: 42",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "simulate":
            sim_input = SimInput(
                vola=Vola(
                    amount=cast(VolaAmount, args.vola),
                    smoothing=not args.no_smoothing,
                ),
                expected_yearly_return=str(args.expected_yearly_return),
                is_eyr_markovian=bool(args.markovian),
                start_month=str(args.start),
                n_months=str(args.n_months),
                name=str(args.name),
                crashes=list(args.crash),
                seed=args.seed,
            )
            output_path = simulate_to_csv(sim_input=sim_input, output_path=Path(args.output))
            print(f"Simulation {sim_input.chart_name()} written: {output_path.resolve()}")
            return 0

        if args.command == "balance":
            session = compute_balance_with_config(Path(args.config))
            final_balance = session.final_balance
            if final_balance is not None:
                print(f"Final balance: {format_num(final_balance.final_balance)}")
                print(f"Total payments: {format_num(final_balance.total_payments)}")
                yearly_return_perc = final_balance.yearly_return_perc
                yearly_return_text = (
                    "-" if yearly_return_perc is None else f"{yearly_return_perc:0.2f}%"
                )
                print(f"Yearly return: {yearly_return_text}")
            return 0

        if args.command == "stats":
            session = compute_stats_with_config(Path(args.config))
            if session.rebalance_stats_summary is not None:
                print(session.rebalance_stats_summary.as_frame().to_string(index=False))
            return 0

        if args.command == "best-trigger":
            session = find_best_trigger_with_config(Path(args.config))
            if session.best_rebalance_trigger is not None:
                print(session.best_rebalance_trigger.as_frame().to_string(index=False))
            return 0

        if args.command == "run":
            execution = run_with_config(Path(args.config))
            print(f"Report generated: {execution.report_path.resolve()}")
            print(f"Session saved: {execution.session_path.resolve()}")
            return 0

        if args.command == "export-csv":
            csv_path = export_csv_with_config(Path(args.config), Path(args.output))
            print(f"Charts exported: {csv_path.resolve()}")
            return 0

        if args.command == "share":
            print(share_session(Path(args.session)))
            return 0

        if args.command == "load":
            session_path = load_shared_session(str(args.link), Path(args.output))
            print(f"Session saved: {session_path.resolve()}")
            return 0

        if args.command == "demo":
            report_path = run_demo(output_path=Path(args.output), seed=args.seed)
            print(f"Report generated: {report_path.resolve()}")
            return 0
    except Exception as error:
        parser.exit(status=1, message=f"Error: {error}\n")

    parser.print_help()
    return 1


def _run_session(
    session: BalanceSession,
    report_name: str,
    report_dir: Path,
    session_path: Path,
    find_best_trigger: bool,
    report_config: dict[str, Any],
) -> RunExecution:
    if session.recompute_balance() is None:
        raise RuntimeError(str(session.status_msg))
    if session.payment.trigger().is_active:
        session.recompute_rebalance_stats(always=True)
    if find_best_trigger:
        session.find_best_rebalance_trigger()

    plot_paths = generate_balance_plots(
        charts=session.charts,
        output_dir=report_dir / "assets",
        prefix=report_name,
        initial_balance=session.payment.initial_balance,
        stats=session.rebalance_stats,
    )
    saved_session_path = session.save(session_path)
    report_path = ReportBuilder(output_dir=report_dir).build(
        session=session,
        plot_paths=list(plot_paths),
        config=report_config,
        rebalance_stats_df=(
            None if session.rebalance_stats is None else session.rebalance_stats.per_horizon
        ),
    )
    return RunExecution(
        report_path=report_path,
        session_path=saved_session_path,
        plot_paths=plot_paths,
    )


def _resolve_path(base_dir: Path, raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (base_dir / candidate).resolve()


def _as_optional_month(value: Any, key: str) -> MonthDate | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return MonthDate.from_str(text)
    except ValueError as error:
        msg = f"`{key}` must be a month YYYY/MM: {error}"
        raise ValueError(msg) from error


def _parse_rebalance_config(raw_config: dict[str, Any]) -> tuple[str, str, bool]:
    rebalance_raw = raw_config.get("rebalance", {})
    if not isinstance(rebalance_raw, dict):
        msg = "`rebalance` must be a TOML table when provided."
        raise ValueError(msg)
    interval_raw = rebalance_raw.get("interval")
    deviation_raw = rebalance_raw.get("deviation")
    interval = "" if interval_raw is None else str(interval_raw)
    deviation = "" if deviation_raw is None else str(deviation_raw)
    if interval and not interval.strip().isdigit():
        msg = f"`rebalance.interval` must be a whole number of months, got {interval_raw}"
        raise ValueError(msg)
    if deviation:
        try:
            deviation_value = float(deviation)
        except ValueError as error:
            msg = f"`rebalance.deviation` must be a number in percent, got {deviation_raw}"
            raise ValueError(msg) from error
        if not math.isfinite(deviation_value) or not 0.0 < deviation_value <= 100.0:
            msg = "`rebalance.deviation` must be in (0, 100] percent."
            raise ValueError(msg)
    find_best_trigger = bool(rebalance_raw.get("find_best_trigger", True))
    return interval, deviation, find_best_trigger


def _parse_payments_config(
    raw_config: dict[str, Any],
) -> tuple[list[str], list[tuple[str, str]]]:
    payments_raw = raw_config.get("payments")
    if payments_raw is None:
        return ["0.0"], []
    if isinstance(payments_raw, (int, float, str)):
        return [str(payments_raw)], []
    if not isinstance(payments_raw, list):
        msg = "`payments` must be a number, an expression or an array of tables."
        raise ValueError(msg)

    pay_fields: list[str] = []
    intervals: list[tuple[str, str]] = []
    for position, payment_raw in enumerate(payments_raw):
        if not isinstance(payment_raw, dict) or "amount" not in payment_raw:
            msg = f"`payments[{position}]` needs an `amount`."
            raise ValueError(msg)
        start_raw = payment_raw.get("start")
        end_raw = payment_raw.get("end")
        if start_raw is None or end_raw is None:
            msg = f"`payments[{position}]` needs `start` and `end` months."
            raise ValueError(msg)
        pay_fields.append(str(payment_raw["amount"]))
        intervals.append((str(start_raw), str(end_raw)))
    return pay_fields, intervals


def _parse_chart_source(chart_raw: Any, base_dir: Path, position: int) -> ChartSource:
    if not isinstance(chart_raw, dict):
        msg = f"`charts[{position}]` must be a TOML table."
        raise ValueError(msg)
    kind = str(chart_raw.get("source", "")).strip().lower()
    name_raw = chart_raw.get("name")
    name = None if name_raw is None else str(name_raw)
    fraction_raw = chart_raw.get("fraction")
    fraction = None if fraction_raw is None else float(fraction_raw)
    if fraction is not None and not 0.0 <= fraction <= 1.0:
        msg = f"`charts[{position}].fraction` must be in [0, 1]."
        raise ValueError(msg)

    if kind == "historic":
        preset = chart_raw.get("preset")
        if not preset:
            msg = f"`charts[{position}]` with source historic needs a `preset`."
            raise ValueError(msg)
        return ChartSource(kind="historic", name=name, preset=str(preset), fraction=fraction)

    if kind == "csv":
        path_raw = chart_raw.get("path")
        if not path_raw:
            msg = f"`charts[{position}]` with source csv needs a `path`."
            raise ValueError(msg)
        return ChartSource(
            kind="csv",
            name=name,
            csv_path=_resolve_path(base_dir=base_dir, raw_path=str(path_raw)),
            fraction=fraction,
        )

    if kind == "simulation":
        vola_amount = str(chart_raw.get("vola", "mid"))
        sim_input = SimInput(
            vola=Vola(
                amount=cast(VolaAmount, vola_amount),
                smoothing=bool(chart_raw.get("vola_smoothing", True)),
                smoothing_window=int(chart_raw.get("vola_window", 12)),
            ),
            expected_yearly_return=str(chart_raw.get("expected_yearly_return", "6.0")),
            is_eyr_markovian=bool(chart_raw.get("markovian", False)),
            start_month=str(chart_raw.get("start_month", "2010/01")),
            n_months=str(chart_raw.get("n_months", "360")),
            name=name or "",
            crashes=[str(crash) for crash in chart_raw.get("crashes", [])],
            seed=None if chart_raw.get("seed") is None else int(chart_raw["seed"]),
        )
        return ChartSource(kind="simulation", name=name, sim_input=sim_input, fraction=fraction)

    msg = f"`charts[{position}].source` must be historic, simulation or csv, got '{kind}'"
    raise ValueError(msg)


def _config_for_report(config: AppConfig) -> dict[str, Any]:
    return {
        "report_name": config.report_name,
        "initial_balance": config.initial_balance,
        "payments": ", ".join(config.payment_fields),
        "rebalance_interval": config.rebalance_interval or "-",
        "rebalance_deviation": config.rebalance_deviation or "-",
        "start": "-" if config.start is None else str(config.start),
        "end": "-" if config.end is None else str(config.end),
        "charts": ", ".join(
            source.name or source.preset or source.kind for source in config.charts
        ),
    }
