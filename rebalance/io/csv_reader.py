"""Monthly price development CSV parsing."""

from __future__ import annotations

from io import StringIO

import pandas as pd

from rebalance.core.dates import MonthDate


def read_csv_from_str(csv_text: str) -> tuple[list[MonthDate], list[float]]:
    """Parse `date,value` rows below a header line into dates and values.

    Dates are `YYYY/MM` and must be consecutive months. Rows with less than two
    fields are skipped.
    """
    if not csv_text.strip():
        msg = "CSV text is empty."
        raise ValueError(msg)
    try:
        raw_rows = pd.read_csv(
            StringIO(csv_text),
            header=0,
            dtype=str,
            skipinitialspace=True,
            keep_default_na=False,
        )
    except pd.errors.ParserError as error:
        msg = f"could not parse CSV: {error}"
        raise ValueError(msg) from error
    if raw_rows.shape[1] < 2:
        msg = "CSV needs at least two columns, date and value."
        raise ValueError(msg)

    dates: list[MonthDate] = []
    values: list[float] = []
    for date_text, value_text in zip(raw_rows.iloc[:, 0], raw_rows.iloc[:, 1], strict=True):
        if not str(date_text).strip() or not str(value_text).strip():
            continue
        try:
            value = float(value_text)
        except ValueError as error:
            msg = f"could not parse value '{value_text}' of {date_text}"
            raise ValueError(msg) from error
        dates.append(MonthDate.from_str(str(date_text)))
        values.append(value)

    for previous, current in zip(dates, dates[1:]):
        if previous.next_month() != current:
            msg = f"months need to be consecutive, got {previous} followed by {current}"
            raise ValueError(msg)
    return dates, values
