"""Shared test fixtures and candle builders."""

import datetime as dt

import pytest

from day0_backtester.config import StrategyConfig
from day0_backtester.models import Candle

START = dt.date(2024, 1, 1)


def day(i: int) -> dt.date:
    return START + dt.timedelta(days=i)


def flat_candle(i: int, close: float = 100.0, volume: float = 1_000_000.0) -> Candle:
    return Candle(date=day(i), open=close, high=close + 1.0, low=close - 1.0, close=close, volume=volume)


def candle(i: int, close: float, high: float, low: float, volume: float = 1_000_000.0) -> Candle:
    return Candle(date=day(i), open=close, high=high, low=low, close=close, volume=volume)


@pytest.fixture
def config() -> StrategyConfig:
    """Default strategy parameters (6% / 2x / SMA20 / 1% / 4 days / 2%)."""
    return StrategyConfig()


@pytest.fixture
def flat_series():
    """Factory: n flat candles at close=100, volume=1M."""

    def _make(n: int = 30):
        return [flat_candle(i) for i in range(n)]

    return _make


@pytest.fixture
def alert_series(flat_series):
    """Factory: 20 flat candles, a Day 0 spike at index 20, then `after` candles.

    Day 0: close 110 (+10%), high 111, low 100, volume 3M (3x SMA).
    """

    def _make(after=()):
        series = flat_series(20)
        series.append(candle(20, close=110.0, high=111.0, low=100.0, volume=3_000_000.0))
        for offset, (close, high, low) in enumerate(after, start=21):
            series.append(candle(offset, close=close, high=high, low=low))
        return series

    return _make
