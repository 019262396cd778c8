"""Monthly payments described by arithmetic expressions."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from rebalance.core.dates import Interval, MonthDate

PAYMENT_VARIABLES: tuple[str, ...] = ("month", "year", "n")
MONTHS_SINCE_START_PATTERN = re.compile(r"\bn\b")


@dataclass(frozen=True, slots=True)
class PaymentExpression:
    """Expression like `100`, `50 * 1.02 ** (n / 12)` or `200 * (month == 12)`.

    Available variables are the calendar `month` (1-12), the `year` and `n`,
    the number of months since the start of the computation.
    """

    text: str

    def __post_init__(self) -> None:
        if not str(self.text).strip():
            msg = "payment expression cannot be empty."
            raise ValueError(msg)
        self.evaluate(MonthDate(2000, 1), 0)

    def evaluate(self, date: MonthDate, n: int = 0) -> float:
        variables = dict(zip(PAYMENT_VARIABLES, (date.month, date.year, int(n)), strict=True))
        try:
            raw_value = pd.eval(
                str(self.text),
                engine="python",
                parser="pandas",
                local_dict=variables,
            )
            value = float(raw_value)
        except Exception as error:
            msg = f"could not evaluate payment expression '{self.text}': {error}"
            raise ValueError(msg) from error
        if not math.isfinite(value):
            msg = f"payment expression '{self.text}' is not finite for {date}."
            raise ValueError(msg)
        return value

    @property
    def uses_months_since_start(self) -> bool:
        return MONTHS_SINCE_START_PATTERN.search(str(self.text)) is not None

    def __str__(self) -> str:
        return str(self.text)


@dataclass(slots=True)
class MonthlyPayments:
    """Payments per month, either constant over time or restricted to intervals."""

    expressions: list[PaymentExpression]
    intervals: list[Interval] | None = None
    _cache: dict[tuple[MonthDate, int], float] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.intervals is not None and len(self.intervals) != len(self.expressions):
            msg = (
                f"need as many payment expressions as intervals, got {len(self.expressions)} "
                f"expressions and {len(self.intervals)} intervals"
            )
            raise ValueError(msg)
        if self.intervals is None and len(self.expressions) != 1:
            msg = "a payment without interval needs exactly one expression"
            raise ValueError(msg)

    @classmethod
    def from_single_payment(cls, expression: PaymentExpression | str | float) -> MonthlyPayments:
        return cls(expressions=[_as_expression(expression)])

    @classmethod
    def from_intervals(
        cls,
        expressions: Sequence[PaymentExpression | str | float],
        intervals: Sequence[Interval],
    ) -> MonthlyPayments:
        return cls(
            expressions=[_as_expression(expression) for expression in expressions],
            intervals=list(intervals),
        )

    @classmethod
    def zero(cls) -> MonthlyPayments:
        return cls.from_single_payment("0.0")

    @property
    def uses_months_since_start(self) -> bool:
        return any(expression.uses_months_since_start for expression in self.expressions)

    def compute(self, date: MonthDate, n: int = 0) -> float:
        """Payment due in month `date`; `n` counts months since the computation start."""
        key = (date, int(n))
        if key not in self._cache:
            self._cache[key] = self._compute_uncached(date, int(n))
        return self._cache[key]

    def _compute_uncached(self, date: MonthDate, n: int) -> float:
        if self.intervals is None:
            return self.expressions[0].evaluate(date, n)
        return float(
            sum(
                expression.evaluate(date, n)
                for expression, interval in zip(self.expressions, self.intervals, strict=True)
                if interval.contains(date)
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "expressions": [expression.text for expression in self.expressions],
            "intervals": (
                None
                if self.intervals is None
                else [[str(interval.start), str(interval.end)] for interval in self.intervals]
            ),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MonthlyPayments:
        expressions = [PaymentExpression(str(text)) for text in payload.get("expressions", [])]
        raw_intervals = payload.get("intervals")
        if raw_intervals is None:
            return cls(expressions=expressions)
        intervals = [Interval.from_strs(str(start), str(end)) for start, end in raw_intervals]
        return cls(expressions=expressions, intervals=intervals)


def _as_expression(value: PaymentExpression | str | float) -> PaymentExpression:
    if isinstance(value, PaymentExpression):
        return value
    return PaymentExpression(str(value))
