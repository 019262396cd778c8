from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from rebalance.core.fractions import (
    add_fraction,
    normalize_fractions,
    redistribute_fractions,
    sorted_indices,
)


def test_add_fraction_splits_evenly() -> None:
    assert add_fraction([]) == pytest.approx([1.0])
    assert add_fraction([1.0]) == pytest.approx([0.5, 0.5])
    assert add_fraction([0.5, 0.5]) == pytest.approx([1.0 / 3.0] * 3)


def test_sorted_indices() -> None:
    assert sorted_indices([0.4, 123.3, 0.2, -1.0, 0.0]) == [3, 4, 2, 0, 1]


def test_redistribute_fractions_sums_to_one() -> None:
    redistributed = redistribute_fractions([0.1, 0.6, 0.1], 0.2)

    assert sum(redistributed) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize(
    ("fractions", "expected", "pivot_idx", "fixed"),
    [
        ([0.1, 0.3], [0.7, 0.3], 0, [False, True]),
        ([0.1, 0.3, 0.9], [0.0, 0.3, 0.7], 2, [False, True, False]),
        ([0.1, 0.1, 0.9], [0.0, 0.1, 0.9], 2, [False, True, False]),
        ([-1.9, 0.3, 0.1], [0.0, 0.6, 0.4], 0, [True, False, False]),
        ([0.9, 0.05, 0.5], [0.5, 0.0, 0.5], 2, None),
        ([0.1, 0.1, 0.5], [0.4, 0.1, 0.5], 2, [False, True, False]),
        ([0.1, 0.1, 0.5], [0.25, 0.25, 0.5], 2, None),
        ([0.2, 0.1, 0.1], [0.2, 0.4, 0.4], 0, None),
        ([0.9, 0.1, 0.1], [0.9, 0.05, 0.05], 0, None),
        ([1.9, 0.1, 0.1], [1.0, 0.0, 0.0], 0, None),
        ([-1.9, 0.3, 0.1], [0.0, 0.6, 0.4], 0, None),
    ],
)
def test_normalize_fractions_reference_cases(
    fractions: list[float],
    expected: list[float],
    pivot_idx: int,
    fixed: list[bool] | None,
) -> None:
    normalized = normalize_fractions(fractions, pivot_idx, fixed)

    assert normalized == pytest.approx(expected, abs=1e-12)


def test_normalize_fractions_rejects_bad_pivot() -> None:
    with pytest.raises(IndexError):
        normalize_fractions([0.5, 0.5], 2)


@settings(max_examples=200, deadline=None)
@given(
    fractions=st.lists(
        st.floats(min_value=0.0, max_value=1.0, allow_nan=False, allow_infinity=False),
        min_size=2,
        max_size=6,
    ),
    pivot_seed=st.integers(min_value=0, max_value=100),
)
def test_normalize_fractions_keeps_valid_portfolio(
    fractions: list[float],
    pivot_seed: int,
) -> None:
    pivot_idx = pivot_seed % len(fractions)
    normalized = normalize_fractions(fractions, pivot_idx)

    assert sum(normalized) == pytest.approx(1.0, abs=1e-9)
    assert all(0.0 <= fraction <= 1.0 for fraction in normalized)
