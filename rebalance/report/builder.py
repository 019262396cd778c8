"""HTML report builder for balancing sessions."""

from __future__ import annotations

import html
import math
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from rebalance.session import BalanceSession


def space_sep_1000(number_text: str) -> str:
    """Group the integral digits in threes with spaces if there are more than 4."""
    integral_part, separator, fractional_part = number_text.partition(".")
    sign = ""
    if integral_part.startswith("-"):
        sign, integral_part = "-", integral_part[1:]
    if len(integral_part) > 4:
        head_len = len(integral_part) % 3
        groups = [integral_part[:head_len]] if head_len else []
        groups.extend(
            integral_part[idx : idx + 3] for idx in range(head_len, len(integral_part), 3)
        )
        integral_part = " ".join(groups)
    return f"{sign}{integral_part}{separator}{fractional_part}"


def format_num(value: float) -> str:
    return space_sep_1000(f"{value:0.2f}")


class ReportBuilder:
    """Build a self-contained HTML report with balance, statistics, and chart images."""

    def __init__(self, output_dir: str | Path = "reports") -> None:
        self.output_dir = Path(output_dir)

    def build(
        self,
        session: BalanceSession,
        plot_paths: list[str | Path],
        config: dict[str, Any],
        rebalance_stats_df: pd.DataFrame | None = None,
    ) -> Path:
        """Generate an HTML report at `reports/<name>.html`."""
        report_name = str(config.get("report_name", "report"))
        safe_name = _safe_report_name(report_name)
        output_path = self.output_dir / f"{safe_name}.html"
        output_path.parent.mkdir(parents=True, exist_ok=True)

        generated_time = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        status_html = _render_status(session.status_msg)
        summary_cards = _render_summary_cards(session)
        config_table = _render_key_value_table(config)
        portfolio_table = _render_dataframe_table(
            frame=_portfolio_frame(session),
            empty_message="No charts in the portfolio.",
        )
        payment_table = _render_key_value_table(_payment_summary(session))
        stats_summary_table = _render_dataframe_table(
            frame=(
                None
                if session.rebalance_stats_summary is None
                else session.rebalance_stats_summary.as_frame()
            ),
            empty_message="No rebalance statistics computed.",
        )
        stats_horizon_table = _render_dataframe_table(
            frame=rebalance_stats_df,
            empty_message="No per-horizon statistics available.",
        )
        best_trigger_table = _render_dataframe_table(
            frame=(
                None
                if session.best_rebalance_trigger is None
                else session.best_rebalance_trigger.as_frame()
            ),
            empty_message="No best rebalance trigger computed.",
        )
        images_html = _render_images(plot_paths=plot_paths, html_path=output_path)
        session_html = _render_session_json(session.to_json())

        document = f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Balance Report - {html.escape(safe_name)}</title>
  <style>
    body {{
      margin: 0;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      color: #131722;
      background: #f3f5fb;
    }}
    .container {{
      max-width: 1100px;
      margin: 24px auto;
      padding: 0 16px 24px;
    }}
    .panel {{
      background: #ffffff;
      border-radius: 12px;
      padding: 18px;
      box-shadow: 0 8px 20px rgba(19, 23, 34, 0.08);
      margin-bottom: 14px;
    }}
    h1 {{
      margin: 0 0 8px;
      font-size: 28px;
    }}
    h2 {{
      margin: 0 0 10px;
      font-size: 20px;
    }}
    h3 {{
      margin: 12px 0 8px;
      font-size: 16px;
      color: #243046;
    }}
    .meta {{
      color: #4b5565;
      margin: 0;
    }}
    .status-error {{
      margin: 0;
      color: #b91c1c;
      font-weight: 600;
    }}
    .summary-grid {{
      display: grid;
      grid-template-columns: repeat(3, minmax(0, 1fr));
      gap: 10px;
    }}
    .summary-card {{
      border: 1px solid #e6ebf3;
      border-radius: 10px;
      padding: 12px;
      background: #fbfcff;
    }}
    .summary-label {{
      margin: 0;
      font-size: 12px;
      letter-spacing: 0.02em;
      text-transform: uppercase;
      color: #5f6b81;
    }}
    .summary-value {{
      margin: 6px 0 0;
      font-size: 22px;
      font-weight: 700;
      color: #111827;
    }}
    table {{
      width: 100%;
      border-collapse: collapse;
      font-size: 14px;
    }}
    th, td {{
      text-align: left;
      border-bottom: 1px solid #e6ebf3;
      padding: 8px 10px;
      vertical-align: top;
    }}
    th {{
      font-weight: 600;
      color: #2f3a4f;
    }}
    .image-grid {{
      display: grid;
      gap: 12px;
      grid-template-columns: 1fr;
    }}
    .image-grid img {{
      width: 100%;
      border: 1px solid #e6ebf3;
      border-radius: 10px;
      background: #ffffff;
    }}
    .session-block {{
      margin: 0;
      padding: 12px;
      border-radius: 8px;
      border: 1px solid #e6ebf3;
      background: #f8fafc;
      overflow-x: auto;
      font-size: 13px;
      line-height: 1.4;
      white-space: pre-wrap;
      word-break: break-word;
    }}
    details summary {{
      cursor: pointer;
      color: #243046;
      font-weight: 600;
    }}
    @media (max-width: 860px) {{
      .summary-grid {{
        grid-template-columns: 1fr;
      }}
    }}
  </style>
</head>
<body>
  <main class="container">
    <section class="panel">
      <h1>Balance Report</h1>
      <p class="meta">Generated at {generated_time}</p>
      <p class="meta">Report name: {html.escape(safe_name)}</p>
      {status_html}
    </section>
    <section class="panel">
      <h2>Final Balance</h2>
      {summary_cards}
    </section>
    <section class="panel">
      <h2>Portfolio</h2>
      {portfolio_table}
      <h3>Payments and Rebalancing</h3>
      {payment_table}
    </section>
    <section class="panel">
      <h2>Rebalance Statistics</h2>
      <h3>Mean Final Balance by Horizon Range</h3>
      {stats_summary_table}
      <h3>Per Horizon</h3>
      {stats_horizon_table}
    </section>
    <section class="panel">
      <h2>Best Rebalance Trigger</h2>
      {best_trigger_table}
    </section>
    <section class="panel">
      <h2>Charts</h2>
      {images_html}
    </section>
    <section class="panel">
      <h2>Config</h2>
      {config_table}
      <h3>Session</h3>
      {session_html}
    </section>
  </main>
</body>
</html>
"""

        output_path.write_text(document, encoding="utf-8")
        return output_path


def _safe_report_name(name: str) -> str:
    cleaned = "".join(
        character if character.isalnum() or character in {"-", "_"} else "_" for character in name
    )
    return cleaned or "report"


def _render_status(status_msg: str | None) -> str:
    if not status_msg:
        return ""
    return f'<p class="status-error">{html.escape(status_msg)}</p>'


def _render_summary_cards(session: BalanceSession) -> str:
    final_balance = session.final_balance
    if final_balance is None:
        values = {"final_balance": None, "total_payments": None, "yearly_return_perc": None}
    else:
        values = {
            "final_balance": final_balance.final_balance,
            "total_payments": final_balance.total_payments,
            "yearly_return_perc": final_balance.yearly_return_perc,
        }
    cards: list[str] = []
    for key, value in values.items():
        if value is None:
            value_text = "-"
        elif key == "yearly_return_perc":
            value_text = f"{value:0.2f}%"
        else:
            value_text = format_num(value)
        cards.append(
            '<article class="summary-card">'
            f'<p class="summary-label">{html.escape(_display_name(key))}</p>'
            f'<p class="summary-value">{html.escape(value_text)}</p>'
            "</article>"
        )
    return f'<div class="summary-grid">{"".join(cards)}</div>'


def _portfolio_frame(session: BalanceSession) -> pd.DataFrame:
    charts = session.charts
    rows = [
        {
            "chart": chart.name,
            "fraction_perc": fraction * 100,
            "fixed": "yes" if is_fixed else "no",
            "first_month": str(chart.dates[0]) if chart.dates else "-",
            "last_month": str(chart.dates[-1]) if chart.dates else "-",
        }
        for chart, fraction, is_fixed in zip(
            charts.persisted, charts.fractions, charts.fractions_fixed, strict=True
        )
    ]
    return pd.DataFrame(rows)


def _payment_summary(session: BalanceSession) -> dict[str, Any]:
    payment = session.payment
    return {
        "initial_balance": format_num(payment.initial_balance),
        "monthly_payments": ", ".join(payment.monthly_payments.pay_fields) or "-",
        "payment_intervals": (
            ", ".join(f"{start}-{end}" for start, end in payment.monthly_payments.intervals)
            or "every month"
        ),
        "rebalance_interval": (
            "-" if payment.rebalance_interval is None else f"{payment.rebalance_interval} months"
        ),
        "rebalance_deviation": (
            "-"
            if payment.rebalance_deviation is None
            else f"{payment.rebalance_deviation * 100:g}%"
        ),
    }


def _render_key_value_table(values: dict[str, Any]) -> str:
    if not values:
        return "<p>No values available.</p>"

    rows: list[str] = []
    for key, raw_value in values.items():
        rows.append(
            f"<tr><th>{html.escape(_display_name(key))}</th>"
            f"<td>{html.escape(_format_value(raw_value))}</td></tr>"
        )
    return f"<table><tbody>{''.join(rows)}</tbody></table>"


def _render_dataframe_table(
    frame: pd.DataFrame | None,
    empty_message: str = "No table data available.",
) -> str:
    if frame is None or frame.empty:
        return f"<p>{html.escape(empty_message)}</p>"

    display_frame = _format_dataframe_for_display(frame)
    header_cells = "".join(
        f"<th>{html.escape(str(column_name))}</th>" for column_name in display_frame.columns
    )
    body_rows: list[str] = []
    for row_position in range(len(display_frame)):
        row = display_frame.iloc[row_position]
        value_cells = "".join(f"<td>{html.escape(str(value))}</td>" for value in row.tolist())
        body_rows.append(f"<tr>{value_cells}</tr>")
    return (
        f"<table><thead><tr>{header_cells}</tr></thead><tbody>{''.join(body_rows)}</tbody></table>"
    )


def _render_images(plot_paths: list[str | Path], html_path: Path) -> str:
    if not plot_paths:
        return "<p>No charts generated.</p>"

    image_tags: list[str] = []
    for path in plot_paths:
        original_path = Path(path)
        if original_path.is_absolute():
            relative_path = Path(os.path.relpath(original_path, start=html_path.parent))
        else:
            relative_path = original_path
        escaped_path = html.escape(relative_path.as_posix())
        image_tags.append(f'<img src="{escaped_path}" alt="{escaped_path}" loading="lazy" />')
    return f'<div class="image-grid">{"".join(image_tags)}</div>'


def _render_session_json(session_json: str) -> str:
    return (
        "<details>"
        "<summary>Show Session JSON</summary>"
        f'<pre class="session-block">{html.escape(session_json)}</pre>'
        "</details>"
    )


def _format_dataframe_for_display(frame: pd.DataFrame) -> pd.DataFrame:
    formatted = frame.copy()
    for column_name in formatted.columns:
        column = formatted[column_name]
        if pd.api.types.is_float_dtype(column):
            formatted[column_name] = column.map(_format_float_cell)
        elif pd.api.types.is_numeric_dtype(column):
            formatted[column_name] = column.astype(str)
        else:
            formatted[column_name] = column.map(_format_value)

    renamed_columns = {column_name: _display_name(column_name) for column_name in formatted.columns}
    return formatted.rename(columns=renamed_columns)


def _format_float_cell(value: float) -> str:
    if math.isnan(value):
        return "-"
    if float(value).is_integer() and abs(value) < 1000:
        return str(int(value))
    return format_num(value)


def _display_name(name: str) -> str:
    special_names = {
        "fraction_perc": "Fraction (%)",
        "deviation_perc": "Deviation (%)",
        "yearly_return_perc": "Yearly Return",
        "n_months": "Months",
        "n_windows": "Windows",
        "mean_w_reb": "Mean with Rebalancing",
        "mean_wo_reb": "Mean without Rebalancing",
        "w_rebalance": "With Rebalancing",
        "wo_rebalance": "Without Rebalancing",
        "share_w_reb_better": "Share Rebalancing Better",
    }
    if name in special_names:
        return special_names[name]
    return name.replace("_", " ").title()


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "-"
        return format_num(value)
    return str(value)
