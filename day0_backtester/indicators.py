from __future__ import annotations

from typing import Sequence
import numpy as np

def trailing_sma(values: Sequence[float], end: int, period: int) -> float:
    """Mean of the `period` values *before* index `end` (values[end] excluded).

    Requires end >= period; callers treat shorter history as "no signal".
    """
    if period <= 0 or end < period:
        raise ValueError(f"need {period} values before index {end}")
    window = np.asarray(values[end - period : end], dtype=float)
    return float(window.sum() / period)

def pct_change(new: float, old: float) -> float:
    """Percent change from `old` to `new` (old must be non-zero)."""
    return (float(new) - float(old)) / float(old) * 100.0

def premium_price(reference: float, premium_pct: float) -> float:
    return float(reference) * (1.0 + float(premium_pct) / 100.0)

def discount_price(reference: float, discount_pct: float) -> float:
    return float(reference) * (1.0 - float(discount_pct) / 100.0)
