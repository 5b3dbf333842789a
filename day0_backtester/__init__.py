"""Day 0 price/volume spike backtester (LONG only, daily bars).

Core idea:
- Day 0 alert at close[i]: close-to-close change >= 6% AND
  volume >= 2x SMA20 of the previous 20 volumes
- Staged limit entry over days 1..4:
    * day 1 limit = close[D0] * 1.01
    * day k limit = high[D(k-1)] * 1.01
    * first day whose high reaches its limit fills at the limit
- Stop = max(low of the day before entry, entry * 0.98)
- Exit on the day after entry: stop if low <= stop, else that day's close
- After an alert the next 5 bars are not scanned.
"""

__all__ = [
    "config",
    "errors",
    "models",
    "indicators",
    "strategy",
    "backtester",
    "export",
    "instruments",
    "kite_client",
    "mock_data",
    "cli",
]
