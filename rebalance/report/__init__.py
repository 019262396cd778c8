"""Report generation package."""

from rebalance.report.builder import ReportBuilder, format_num, space_sep_1000
from rebalance.report.plots import generate_balance_plots

__all__ = ["ReportBuilder", "format_num", "generate_balance_plots", "space_sep_1000"]
