"""Target fractions of the portfolio assets.

Fractions live in [0, 1] and sum up to 1. Every operation here returns a new
list and keeps that invariant after a single user interaction: adding an
asset, removing one, or dragging one fraction while others may be fixed.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np


def sorted_indices(values: Sequence[float]) -> list[int]:
    """Indices that sort `values` ascending, ties keep their order."""
    return [int(index) for index in np.argsort(np.asarray(values, dtype=float), kind="stable")]


def clamp_01(value: float) -> tuple[float, float]:
    """Clamp to [0, 1] and return the part that was cut off."""
    if value > 1.0:
        return 1.0, value - 1.0
    if value < 0.0:
        return 0.0, value
    return value, 0.0


def add_fraction(fractions: Sequence[float]) -> list[float]:
    """Append a fraction of `1/(n+1)` taken evenly from the existing ones."""
    updated = [float(fraction) for fraction in fractions]
    updated.append(1.0 / (1.0 + len(updated)))
    pivot_idx = len(updated) - 1
    if pivot_idx == 0:
        return updated

    reduction = updated[pivot_idx] / pivot_idx
    rest = 0.0
    for idx in sorted_indices(updated):
        if idx == pivot_idx:
            continue
        updated[idx] -= reduction + rest
        if updated[idx] < 0.0:
            rest += abs(updated[idx])
            updated[idx] = 0.0
    return updated


def redistribute_fractions(fractions: Sequence[float], to_redistribute: float) -> list[float]:
    """Spread a freed fraction over the remaining ones, largest first."""
    updated = [float(fraction) for fraction in fractions]
    if not updated:
        return updated

    increase = to_redistribute / len(updated)
    rest = 0.0
    for idx in reversed(sorted_indices(updated)):
        updated[idx] += increase + rest
        if updated[idx] > 1.0:
            rest += updated[idx] - 1.0
            updated[idx] = 1.0
    return updated


def normalize_fractions(
    fractions: Sequence[float],
    pivot_idx: int,
    fixed: Sequence[bool] | None = None,
) -> list[float]:
    """Re-balance fractions after `fractions[pivot_idx]` was changed by the user.

    Fixed fractions are left untouched. The pivot is clamped so that it fits
    next to the fixed ones and the difference to 1 is spread over all other
    free fractions.
    """
    updated = [float(fraction) for fraction in fractions]
    if not updated:
        return updated
    if not 0 <= pivot_idx < len(updated):
        msg = f"pivot index {pivot_idx} out of range for {len(updated)} fractions"
        raise IndexError(msg)

    fixed_flags = list(fixed) if fixed is not None else [False] * len(updated)
    if len(fixed_flags) != len(updated):
        msg = "fixed flags and fractions need the same length"
        raise ValueError(msg)

    fixed_others = [
        idx for idx, is_fixed in enumerate(fixed_flags) if is_fixed and idx != pivot_idx
    ]
    n_fixed = len(fixed_others)
    fixed_sum = sum(updated[idx] for idx in fixed_others)

    if len(updated) == 1:
        updated[pivot_idx] = 1.0
        return updated
    if len(updated) - n_fixed == 1:
        updated[pivot_idx] = 1.0 - fixed_sum
        return updated

    upper = 1.0 - fixed_sum
    updated[pivot_idx] = min(max(updated[pivot_idx], 0.0), upper)

    def is_mutable(idx: int) -> bool:
        return idx != pivot_idx and not fixed_flags[idx]

    mutable_sum = sum(value for idx, value in enumerate(updated) if is_mutable(idx))
    per_fraction = (1.0 - updated[pivot_idx] - mutable_sum - fixed_sum) / (
        len(updated) - 1 - n_fixed
    )

    order: Iterable[int] = sorted_indices(updated)
    if per_fraction >= 0.0:
        order = reversed(list(order))

    rest = 0.0
    for idx in order:
        if not is_mutable(idx):
            continue
        clamped, cut_off = clamp_01(updated[idx] + per_fraction + rest)
        updated[idx] = clamped
        rest += cut_off
    return updated
