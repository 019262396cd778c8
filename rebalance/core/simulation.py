"""Random walk price developments with volatility regimes and crashes."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, cast

import numpy as np

from rebalance.core.dates import MonthDate, date_after_n_months

LOGGER = logging.getLogger(__name__)

VolaAmount = Literal["no", "low", "mid", "high"]

VOLA_LEVELS: dict[str, float] = {
    "no": 0.0,
    "low": 0.005,
    "mid": 0.01,
    "high": 0.02,
}
VOLA_GAMMA_SHAPE = 4.0
MEAN_REVERSION_SPEED = 0.05
CRASH_FACTOR = 0.5
START_PRICE = 100.0


@dataclass(slots=True)
class Vola:
    """Volatility level and whether it is redrawn every `smoothing_window` months."""

    amount: VolaAmount = "mid"
    smoothing: bool = True
    smoothing_window: int = 12

    def __post_init__(self) -> None:
        if self.amount not in VOLA_LEVELS:
            msg = f"vola amount must be one of {sorted(VOLA_LEVELS)}, got {self.amount}"
            raise ValueError(msg)
        if int(self.smoothing_window) < 1:
            msg = "vola smoothing window must be at least 1."
            raise ValueError(msg)

    def amount_as_float(self) -> float:
        return VOLA_LEVELS[self.amount]

    @property
    def window(self) -> int:
        return int(self.smoothing_window) if self.smoothing else 1

    def __str__(self) -> str:
        return f"{self.amount}-vola-{'varies' if self.smoothing else 'global'}"


def random_walk(
    expected_yearly_return: float,
    is_markovian: bool,
    vola: float,
    vola_window: int,
    n_months: int,
    crashes: Sequence[int] = (),
    seed: int | None = None,
) -> list[float]:
    """Simulate `n_months + 1` monthly prices starting at 100.

    Log returns have a constant drift matching `expected_yearly_return` in
    percent. Their standard deviation is drawn from a gamma distribution with
    mean `vola` at the start of every `vola_window` months. A crash index `c`
    halves the price from month `c` to `c + 1`. Non-markovian walks are pulled
    back towards the expected trajectory, so crashes and bad years recover.
    """
    if n_months < 0:
        msg = f"number of months cannot be negative, got {n_months}"
        raise ValueError(msg)
    if expected_yearly_return <= -100.0:
        msg = "expected yearly return must be larger than -100%."
        raise ValueError(msg)
    if vola < 0.0:
        msg = "vola cannot be negative."
        raise ValueError(msg)
    if vola_window < 1:
        msg = "vola window must be at least 1."
        raise ValueError(msg)
    crash_set = set()
    for crash in crashes:
        if not 0 <= int(crash) < max(n_months, 0):
            msg = f"crash index {crash} is not within [0, {n_months})"
            raise ValueError(msg)
        crash_set.add(int(crash))

    random_state = np.random.default_rng(seed)
    monthly_log_drift = math.log1p(expected_yearly_return / 100.0) / 12.0
    log_start = math.log(START_PRICE)

    log_price = log_start
    sigma = vola
    log_prices = [log_price]
    for month in range(n_months):
        if month % vola_window == 0:
            sigma = (
                float(random_state.gamma(VOLA_GAMMA_SHAPE, vola / VOLA_GAMMA_SHAPE))
                if vola > 0.0
                else 0.0
            )
        drift = monthly_log_drift
        if not is_markovian:
            expected_log_price = log_start + monthly_log_drift * month
            drift -= MEAN_REVERSION_SPEED * (log_price - expected_log_price)
        noise = float(random_state.standard_normal()) if sigma > 0.0 else 0.0
        log_price += drift + sigma * noise - 0.5 * sigma * sigma
        if month in crash_set:
            log_price += math.log(CRASH_FACTOR)
        log_prices.append(log_price)

    return [float(price) for price in np.exp(np.asarray(log_prices))]


@dataclass(slots=True)
class ParsedSimInput:
    vola: float
    vola_window: int
    expected_yearly_return: float
    is_eyr_markovian: bool
    start_month: MonthDate
    n_months: int
    crashes: list[int]
    seed: int | None = None

    def dates(self) -> list[MonthDate]:
        return [date_after_n_months(self.start_month, idx) for idx in range(self.n_months + 1)]

    def simulate(self) -> list[float]:
        return random_walk(
            expected_yearly_return=self.expected_yearly_return,
            is_markovian=self.is_eyr_markovian,
            vola=self.vola,
            vola_window=self.vola_window,
            n_months=self.n_months,
            crashes=self.crashes,
            seed=self.seed,
        )


@dataclass(slots=True)
class SimInput:
    """Simulation parameters as entered by the user, kept as text until parsed."""

    vola: Vola = field(default_factory=Vola)
    expected_yearly_return: str = "6.0"
    is_eyr_markovian: bool = False
    start_month: str = "2010/01"
    n_months: str = "360"
    name: str = ""
    crashes: list[str] = field(default_factory=list)
    seed: int | None = None

    def parse(self) -> ParsedSimInput:
        try:
            expected_yearly_return = float(str(self.expected_yearly_return).strip())
        except ValueError as error:
            msg = f"could not parse expected yearly return '{self.expected_yearly_return}'"
            raise ValueError(msg) from error
        n_months_text = str(self.n_months).strip()
        if not n_months_text.isdigit():
            msg = f"number of months needs to be a non-negative integer, got '{self.n_months}'"
            raise ValueError(msg)
        n_months = int(n_months_text)
        start_month = MonthDate.from_str(self.start_month)

        # crashes outside of the simulated timespan are ignored
        crash_indices: list[int] = []
        end_month = start_month + n_months
        for crash_text in self.crashes:
            crash_date = MonthDate.from_str(crash_text)
            if crash_date < start_month or crash_date >= end_month:
                LOGGER.info(
                    "Ignoring crash %s outside of %s-%s", crash_date, start_month, end_month
                )
                continue
            crash_indices.append(start_month.n_months_until(crash_date))

        return ParsedSimInput(
            vola=self.vola.amount_as_float(),
            vola_window=self.vola.window,
            expected_yearly_return=expected_yearly_return,
            is_eyr_markovian=self.is_eyr_markovian,
            start_month=start_month,
            n_months=n_months,
            crashes=sorted(crash_indices),
            seed=self.seed,
        )

    def default_name(self) -> str:
        markov_label = "mrkv" if self.is_eyr_markovian else "non-mrkv"
        return f"{self.expected_yearly_return}_{self.n_months}_{self.vola}_{markov_label}"

    def chart_name(self) -> str:
        return self.name if self.name else self.default_name()

    def to_dict(self) -> dict[str, Any]:
        return {
            "vola": {
                "amount": self.vola.amount,
                "smoothing": self.vola.smoothing,
                "smoothing_window": self.vola.smoothing_window,
            },
            "expected_yearly_return": self.expected_yearly_return,
            "is_eyr_markovian": self.is_eyr_markovian,
            "start_month": self.start_month,
            "n_months": self.n_months,
            "name": self.name,
            "crashes": list(self.crashes),
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SimInput:
        vola_raw = payload.get("vola", {})
        if not isinstance(vola_raw, Mapping):
            msg = "sim input field 'vola' must be a table."
            raise ValueError(msg)
        vola = Vola(
            amount=cast(VolaAmount, str(vola_raw.get("amount", "mid"))),
            smoothing=bool(vola_raw.get("smoothing", True)),
            smoothing_window=int(vola_raw.get("smoothing_window", 12)),
        )
        seed_raw = payload.get("seed")
        return cls(
            vola=vola,
            expected_yearly_return=str(payload.get("expected_yearly_return", "6.0")),
            is_eyr_markovian=bool(payload.get("is_eyr_markovian", False)),
            start_month=str(payload.get("start_month", "2010/01")),
            n_months=str(payload.get("n_months", "360")),
            name=str(payload.get("name", "")),
            crashes=[str(crash) for crash in payload.get("crashes", [])],
            seed=None if seed_raw is None else int(seed_raw),
        )
