from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Sequence

import numpy as np

def generate_mock_candles(
    n: int = 100,
    alert_days: Sequence[int] = (25, 50, 75),
    start: date = date(2024, 1, 1),
    base_price: float = 1000.0,
    base_volume: float = 1_000_000.0,
    seed: int = 7,
) -> List[Dict[str, Any]]:
    """Random-walk daily candles with a +7% / 2.5x volume spike on `alert_days`.

    Other days move within +-1% on 0.8x..1.2x volume, so only the spike days
    can qualify as Day 0 alerts with the default thresholds.
    """
    rng = np.random.RandomState(seed)
    spikes = set(int(d) for d in alert_days)
    price = float(base_price)
    out: List[Dict[str, Any]] = []
    for i in range(n):
        change_pct = (rng.rand() - 0.5) * 2.0
        volume_mult = 0.8 + rng.rand() * 0.4
        if i in spikes:
            # noise-free so it always clears 2x the trailing mean
            change_pct = 7.0
            volume_mult = 2.5
        price *= 1.0 + change_pct / 100.0
        volume = np.floor(base_volume * volume_mult)
        out.append(
            {
                "date": (start + timedelta(days=i)).isoformat(),
                "open": round(price * 0.99, 2),
                "high": round(price * 1.01, 2),
                "low": round(price * 0.98, 2),
                "close": round(price, 2),
                "volume": float(volume),
            }
        )
    return out
