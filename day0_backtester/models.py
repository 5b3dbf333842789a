from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

NOT_APPLICABLE = "N/A"

STOP_LOSS_HIT = "Stop Loss Hit"
NEXT_DAY_CLOSE = "Next Day Close"
OPEN_NO_NEXT_DAY = "Open (no next-day data)"

# Terminal trade states
STATUS_STOP_LOSS = "STOP_LOSS"
STATUS_NEXT_DAY_CLOSE = "NEXT_DAY_CLOSE"
STATUS_NOT_EXECUTED = "NOT_EXECUTED"
STATUS_OPEN = "OPEN"


@dataclass(frozen=True)
class Candle:
    date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: float


# Ordered by date, strictly increasing.
Series = Sequence[Candle]


@dataclass(frozen=True)
class Alert:
    index: int
    date: dt.date
    close: float
    price_change_pct: float
    volume: float
    volume_sma: float
    volume_ratio: float


@dataclass(frozen=True)
class EntryLevel:
    day: int
    date: dt.date
    entry_price: float
    reference_high: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Execution:
    executed: bool
    day: Optional[int] = None
    date: Optional[dt.date] = None
    price: Optional[float] = None
    actual_high: Optional[float] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class Exit:
    exit_date: dt.date
    exit_price: float
    exit_reason: str
    pnl_pct: float


@dataclass(frozen=True)
class Trade:
    symbol: str
    alert_date: dt.date
    day0_close: float
    price_change_pct: float
    volume_ratio: float
    status: str
    exit_reason: str
    entry_day: Optional[int] = None
    entry_date: Optional[dt.date] = None
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    exit_date: Optional[dt.date] = None
    exit_price: Optional[float] = None
    pnl_pct: Optional[float] = None

    @property
    def executed(self) -> bool:
        return self.entry_day is not None

    @property
    def closed(self) -> bool:
        return self.executed and self.pnl_pct is not None

    def to_row(self) -> Dict[str, Any]:
        """Flat record with 2-decimal ratios and "N/A" for fields that do not apply."""

        def na(value: Any) -> Any:
            return NOT_APPLICABLE if value is None else value

        return {
            "symbol": self.symbol,
            "alert_date": self.alert_date.isoformat(),
            "day0_close": self.day0_close,
            "price_change_pct": round(self.price_change_pct, 2),
            "volume_ratio": round(self.volume_ratio, 2),
            "entry_day": na(self.entry_day),
            "entry_date": na(self.entry_date.isoformat() if self.entry_date else None),
            "entry_price": na(self.entry_price),
            "stop_loss": na(self.stop_loss),
            "exit_date": na(self.exit_date.isoformat() if self.exit_date else None),
            "exit_price": na(self.exit_price),
            "exit_reason": self.exit_reason,
            "pnl_pct": na(round(self.pnl_pct, 2) if self.pnl_pct is not None else None),
        }
