from __future__ import annotations

import math
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .config import IST_OFFSET_MINUTES, StrategyConfig
from .errors import IndexOutOfRange, MalformedCandle, SeriesOrderError
from .indicators import discount_price, pct_change, premium_price, trailing_sma
from .models import (
    NEXT_DAY_CLOSE,
    OPEN_NO_NEXT_DAY,
    STATUS_NEXT_DAY_CLOSE,
    STATUS_NOT_EXECUTED,
    STATUS_OPEN,
    STATUS_STOP_LOSS,
    STOP_LOSS_HIT,
    Alert,
    Candle,
    EntryLevel,
    Execution,
    Exit,
    Series,
    Trade,
)

# Bars skipped after an alert so signals do not overlap (next scan index = i + 6).
ALERT_SKIP_BARS = 5

_FIELDS = ("open", "high", "low", "close", "volume")

def _to_float(value: Any, position: int, field: str) -> float:
    if isinstance(value, str):
        value = value.strip().replace(",", "")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise MalformedCandle(position, field, value) from None
    if not math.isfinite(num):
        raise MalformedCandle(position, field, value)
    return num

def _to_day(value: Any, position: int, offset_minutes: int):
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        raise MalformedCandle(position, "date", value) from None
    if pd.isna(ts):
        raise MalformedCandle(position, "date", value)
    # naive timestamps are taken as UTC
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return (ts + pd.Timedelta(minutes=int(offset_minutes))).date()

def _unpack(raw: Any, position: int) -> Sequence[Any]:
    """(date, open, high, low, close, volume) from a mapping or a broker row."""
    if isinstance(raw, Mapping):
        return tuple(raw.get(k) for k in ("date",) + _FIELDS)
    if isinstance(raw, (list, tuple)) and len(raw) >= 6:
        return tuple(raw[:6])
    raise MalformedCandle(position, "row", raw)

def normalize(raw_candles: Iterable[Any], tz_offset_minutes: int = IST_OFFSET_MINUTES) -> List[Candle]:
    """Convert raw candles into an ordered daily Series.

    Each timestamp is shifted by `tz_offset_minutes` (IST by default) and
    truncated to a calendar day. Any unparseable OHLCV value aborts the whole
    series with MalformedCandle; dates must come out strictly increasing.
    """
    series: List[Candle] = []
    for pos, raw in enumerate(raw_candles):
        when, *values = _unpack(raw, pos)
        o, h, l, c, v = (_to_float(x, pos, f) for x, f in zip(values, _FIELDS))
        if v < 0:
            raise MalformedCandle(pos, "volume", v)
        day = _to_day(when, pos, tz_offset_minutes)
        if series and day <= series[-1].date:
            raise SeriesOrderError(f"candle #{pos}: date {day} does not follow {series[-1].date}")
        series.append(Candle(date=day, open=o, high=h, low=l, close=c, volume=v))
    return series

def detect_alert(series: Series, i: int, config: StrategyConfig) -> Optional[Alert]:
    """Day 0 check at index i.

    Price:  (close[i] - close[i-1]) / close[i-1] * 100 >= price_spike_pct
    Volume: volume[i] >= SMA(volume[i-p .. i-1]) * volume_multiplier

    Returns None when there is not enough history (i < p) or either
    condition fails.
    """
    p = int(config.volume_sma_period)
    if i < p:
        return None
    if i >= len(series):
        raise IndexOutOfRange(f"index {i} outside series of length {len(series)}")

    day = series[i]
    prev = series[i - 1]
    if prev.close <= 0:
        return None

    price_change = pct_change(day.close, prev.close)
    volume_sma = trailing_sma([c.volume for c in series[i - p : i]], p, p)

    if volume_sma == 0.0:
        if not (config.allow_zero_volume_sma and day.volume > 0):
            return None
        volume_ok = True
        volume_ratio = math.inf
    else:
        volume_ok = day.volume >= volume_sma * config.volume_multiplier
        volume_ratio = day.volume / volume_sma

    if price_change >= config.price_spike_pct and volume_ok:
        return Alert(
            index=i,
            date=day.date,
            close=day.close,
            price_change_pct=price_change,
            volume=day.volume,
            volume_sma=volume_sma,
            volume_ratio=volume_ratio,
        )
    return None

def build_entry_levels(alert: Alert, series: Series, config: StrategyConfig) -> List[EntryLevel]:
    """Limit prices for days 1..max_entry_days after the alert.

    Day 1 references the alert close; day k references day k-1's high.
    The chain is cut short where the series ends.
    """
    levels: List[EntryLevel] = []
    reference = alert.close
    for day in range(1, int(config.max_entry_days) + 1):
        idx = alert.index + day
        if idx >= len(series):
            break
        candle = series[idx]
        levels.append(
            EntryLevel(
                day=day,
                date=candle.date,
                entry_price=premium_price(reference, config.entry_premium_pct),
                reference_high=reference,
                high=candle.high,
                low=candle.low,
                close=candle.close,
            )
        )
        reference = candle.high
    return levels

def resolve_execution(entry_levels: Sequence[EntryLevel], config: StrategyConfig) -> Execution:
    # fill at the limit price, not the observed high
    for level in entry_levels:
        if level.high >= level.entry_price:
            return Execution(
                executed=True,
                day=level.day,
                date=level.date,
                price=level.entry_price,
                actual_high=level.high,
            )
    return Execution(
        executed=False,
        reason=f"Entry price not reached in {int(config.max_entry_days)} days",
    )

def compute_stop_loss(alert: Alert, execution: Execution, series: Series, config: StrategyConfig) -> float:
    """max(low of the day before the execution day, price * (1 - stop_loss_pct))."""
    if not execution.executed or execution.day is None or execution.price is None:
        raise ValueError("stop loss requires an executed entry")
    previous_day_index = alert.index + execution.day - 1
    if previous_day_index < 0 or previous_day_index >= len(series):
        raise IndexOutOfRange(
            f"previous-day index {previous_day_index} outside series of length {len(series)}"
        )
    previous_low = series[previous_day_index].low
    return max(previous_low, discount_price(execution.price, config.stop_loss_pct))

def resolve_exit(execution: Execution, stop_loss: float, series: Series, execution_index: int) -> Optional[Exit]:
    """Exit on the single day after execution; None if the series ends first."""
    if execution.price is None:
        raise ValueError("exit requires an executed entry")
    if execution_index + 1 >= len(series):
        return None

    next_day = series[execution_index + 1]
    if next_day.low <= stop_loss:
        exit_price, reason = float(stop_loss), STOP_LOSS_HIT
    else:
        exit_price, reason = next_day.close, NEXT_DAY_CLOSE

    return Exit(
        exit_date=next_day.date,
        exit_price=exit_price,
        exit_reason=reason,
        pnl_pct=pct_change(exit_price, execution.price),
    )

def simulate_alert(alert: Alert, series: Series, config: StrategyConfig, symbol: str = "") -> Trade:
    """Run entry, stop and exit resolution for one alert and return its Trade."""
    base = dict(
        symbol=symbol,
        alert_date=alert.date,
        day0_close=alert.close,
        price_change_pct=alert.price_change_pct,
        volume_ratio=alert.volume_ratio,
    )

    levels = build_entry_levels(alert, series, config)
    execution = resolve_execution(levels, config)
    if not execution.executed:
        return Trade(status=STATUS_NOT_EXECUTED, exit_reason=execution.reason or "", **base)

    stop_loss = compute_stop_loss(alert, execution, series, config)
    execution_index = alert.index + int(execution.day)
    exit_ = resolve_exit(execution, stop_loss, series, execution_index)

    entry = dict(
        entry_day=execution.day,
        entry_date=execution.date,
        entry_price=execution.price,
        stop_loss=stop_loss,
    )
    if exit_ is None:
        return Trade(status=STATUS_OPEN, exit_reason=OPEN_NO_NEXT_DAY, **base, **entry)

    status = STATUS_STOP_LOSS if exit_.exit_reason == STOP_LOSS_HIT else STATUS_NEXT_DAY_CLOSE
    return Trade(
        status=status,
        exit_reason=exit_.exit_reason,
        exit_date=exit_.exit_date,
        exit_price=exit_.exit_price,
        pnl_pct=exit_.pnl_pct,
        **base,
        **entry,
    )

def scan(series: Series, config: StrategyConfig, symbol: str = "") -> List[Trade]:
    """Scan every candidate index for Day 0 alerts and simulate each one.

    After an alert at i the next evaluated index is i + ALERT_SKIP_BARS + 1.
    """
    trades: List[Trade] = []
    i = int(config.volume_sma_period)
    n = len(series)
    while i < n:
        alert = detect_alert(series, i, config)
        if alert is None:
            i += 1
            continue
        trades.append(simulate_alert(alert, series, config, symbol))
        i += ALERT_SKIP_BARS + 1
    return trades
