"""Tests for the Day 0 signal and trade simulation engine.

Covers:
- normalize (timestamp shift, numeric coercion, malformed rows, ordering)
- detect_alert thresholds, history guard and zero-volume policy
- entry level chain, execution, stop loss and exit resolution
- scan skip window, truncation at the series end, idempotence
"""

import datetime as dt
import math

import pytest

from conftest import candle, day, flat_candle
from day0_backtester.errors import IndexOutOfRange, MalformedCandle, SeriesOrderError
from day0_backtester.mock_data import generate_mock_candles
from day0_backtester.models import (
    NEXT_DAY_CLOSE,
    OPEN_NO_NEXT_DAY,
    STATUS_NEXT_DAY_CLOSE,
    STATUS_NOT_EXECUTED,
    STATUS_OPEN,
    STATUS_STOP_LOSS,
    STOP_LOSS_HIT,
    Alert,
    Execution,
)
from day0_backtester.strategy import (
    build_entry_levels,
    compute_stop_loss,
    detect_alert,
    normalize,
    resolve_execution,
    resolve_exit,
    scan,
)


# ---------- normalize ----------


class TestNormalize:
    def test_offset_timestamp_keeps_local_day(self):
        raw = [{"date": "2024-01-05T00:00:00+0530", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}]
        series = normalize(raw)
        assert series[0].date == dt.date(2024, 1, 5)

    def test_naive_timestamp_is_utc_shifted_to_ist(self):
        raw = [{"date": "2024-01-04T20:00:00", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}]
        assert normalize(raw)[0].date == dt.date(2024, 1, 5)

    def test_zero_offset_truncates_in_utc(self):
        raw = [{"date": "2024-01-04T20:00:00", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}]
        assert normalize(raw, tz_offset_minutes=0)[0].date == dt.date(2024, 1, 4)

    def test_accepts_broker_rows_and_numeric_strings(self):
        raw = [
            ["2024-01-01T00:00:00+0530", "10", "12.5", "9", "11", "1,500"],
            [dt.date(2024, 1, 2), 11, 13, 10, 12, 2000],
        ]
        series = normalize(raw)
        assert [c.date for c in series] == [dt.date(2024, 1, 1), dt.date(2024, 1, 2)]
        assert series[0].high == 12.5
        assert series[0].volume == 1500.0
        assert isinstance(series[1].close, float)

    @pytest.mark.parametrize("field,value", [
        ("close", "abc"),
        ("open", None),
        ("high", float("nan")),
        ("volume", "inf"),
        ("volume", -5),
    ])
    def test_malformed_field_aborts_series(self, field, value):
        row = {"date": "2024-01-02", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}
        row[field] = value
        good = {"date": "2024-01-01", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}
        with pytest.raises(MalformedCandle) as exc:
            normalize([good, row])
        assert exc.value.field == field
        assert exc.value.position == 1

    def test_unparseable_date(self):
        with pytest.raises(MalformedCandle):
            normalize([{"date": "not a date", "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1}])

    def test_short_row_is_malformed(self):
        with pytest.raises(MalformedCandle):
            normalize([["2024-01-01", 1, 2, 3]])

    def test_duplicate_dates_rejected(self):
        row = {"date": "2024-01-01", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10}
        with pytest.raises(SeriesOrderError):
            normalize([row, dict(row)])

    def test_gaps_are_kept(self):
        rows = [
            {"date": "2024-01-05", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
            {"date": "2024-01-08", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
        ]
        assert len(normalize(rows)) == 2


# ---------- detect_alert ----------


class TestDetectAlert:
    def test_flat_series_has_no_alerts(self, flat_series, config):
        series = flat_series(30)
        assert all(detect_alert(series, i, config) is None for i in range(len(series)))
        assert scan(series, config) == []

    def test_spike_at_index_25(self, flat_series, config):
        series = flat_series(30)
        series[25] = flat_candle(25, close=107.0, volume=2_500_000.0)
        trades = scan(series, config)
        assert len(trades) == 1

        alert = detect_alert(series, 25, config)
        assert alert is not None
        assert alert.index == 25
        assert alert.date == day(25)
        assert alert.price_change_pct == pytest.approx(7.0)
        assert alert.volume_sma == pytest.approx(1_000_000.0)
        assert alert.volume_ratio == pytest.approx(2.5)
        assert round(alert.price_change_pct, 2) == 7.00

    def test_insufficient_history_is_negative_not_error(self, flat_series, config):
        series = flat_series(21)
        series[19] = flat_candle(19, close=150.0, volume=9_000_000.0)
        assert detect_alert(series, 19, config) is None

    def test_series_shorter_than_period_plus_one(self, flat_series, config):
        series = flat_series(20)
        series[-1] = flat_candle(19, close=200.0, volume=50_000_000.0)
        assert scan(series, config) == []

    def test_thresholds_are_inclusive(self, flat_series, config):
        series = flat_series(22)
        # +6.0% exactly and volume exactly 2x
        series[21] = flat_candle(21, close=106.0, volume=2_000_000.0)
        alert = detect_alert(series, 21, config)
        assert alert is not None
        assert alert.volume_ratio == pytest.approx(2.0)

    def test_price_condition_alone_is_not_enough(self, flat_series, config):
        series = flat_series(21)
        series[20] = flat_candle(20, close=120.0, volume=1_900_000.0)
        assert detect_alert(series, 20, config) is None

    def test_volume_sma_excludes_current_day(self, flat_series, config):
        series = flat_series(21)
        series[20] = flat_candle(20, close=110.0, volume=2_000_000.0)
        alert = detect_alert(series, 20, config)
        assert alert.volume_sma == pytest.approx(1_000_000.0)

    def test_pure_function_of_window(self, flat_series, config):
        series = flat_series(30)
        series[25] = flat_candle(25, close=107.0, volume=2_500_000.0)
        assert detect_alert(series, 25, config) == detect_alert(list(series), 25, config)
        # candles outside i-p..i do not matter
        changed = list(series)
        changed[0] = flat_candle(0, close=1.0, volume=1.0)
        changed[29] = flat_candle(29, close=500.0, volume=1.0)
        assert detect_alert(changed, 25, config) == detect_alert(series, 25, config)

    def test_zero_volume_window_disqualifies_by_default(self, config):
        series = [flat_candle(i, volume=0.0) for i in range(20)]
        series.append(flat_candle(20, close=110.0, volume=1000.0))
        assert detect_alert(series, 20, config) is None

    def test_zero_volume_window_passes_when_allowed(self, config):
        series = [flat_candle(i, volume=0.0) for i in range(20)]
        series.append(flat_candle(20, close=110.0, volume=1000.0))
        alert = detect_alert(series, 20, config.replace(allow_zero_volume_sma=True))
        assert alert is not None
        assert math.isinf(alert.volume_ratio)

    def test_index_past_end_raises(self, flat_series, config):
        with pytest.raises(IndexOutOfRange):
            detect_alert(flat_series(21), 21, config)


# ---------- entry levels / execution ----------


class TestEntryAndExecution:
    def test_entry_chain_references_previous_high(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 108.0), (112.0, 113.0, 110.0), (113.0, 115.0, 111.0), (114.0, 116.0, 112.0)])
        alert = detect_alert(series, 20, config)
        levels = build_entry_levels(alert, series, config)

        assert [lv.day for lv in levels] == [1, 2, 3, 4]
        assert levels[0].entry_price == pytest.approx(110.0 * 1.01)
        assert levels[1].entry_price == pytest.approx(111.0 * 1.01)
        assert levels[2].entry_price == pytest.approx(113.0 * 1.01)
        assert levels[3].entry_price == pytest.approx(115.0 * 1.01)
        assert levels[1].reference_high == 111.0
        assert levels[2].date == day(23)

    def test_chain_length_follows_max_entry_days(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 108.0)] * 6)
        alert = detect_alert(series, 20, config)
        assert len(build_entry_levels(alert, series, config.replace(max_entry_days=2))) == 2
        assert len(build_entry_levels(alert, series, config.replace(max_entry_days=6))) == 6

    def test_chain_truncated_at_series_end(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 108.0), (110.0, 111.0, 108.0)])
        alert = detect_alert(series, 20, config)
        assert len(build_entry_levels(alert, series, config)) == 2

        last = alert_series()
        alert = detect_alert(last, 20, config)
        assert build_entry_levels(alert, last, config) == []

    def test_first_triggering_day_fills_at_limit(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 108.0), (112.0, 113.0, 110.0), (120.0, 125.0, 111.0)])
        alert = detect_alert(series, 20, config)
        execution = resolve_execution(build_entry_levels(alert, series, config), config)

        assert execution.executed
        assert execution.day == 2
        assert execution.date == day(22)
        assert execution.price == pytest.approx(111.0 * 1.01)
        assert execution.actual_high == 113.0

    def test_no_trigger_reports_configured_days(self, alert_series, config):
        series = alert_series([(109.0, 110.0, 108.0)] * 4)
        alert = detect_alert(series, 20, config)
        execution = resolve_execution(build_entry_levels(alert, series, config), config)
        assert not execution.executed
        assert execution.reason == "Entry price not reached in 4 days"

        execution = resolve_execution([], config.replace(max_entry_days=3))
        assert execution.reason == "Entry price not reached in 3 days"


# ---------- stop loss / exit ----------


class TestStopLossAndExit:
    def test_stop_is_previous_low_when_higher(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 110.5), (112.0, 113.0, 110.0)])
        alert = detect_alert(series, 20, config)
        execution = Execution(executed=True, day=2, date=day(22), price=112.11)
        assert compute_stop_loss(alert, execution, series, config) == 110.5

    def test_stop_is_percent_floor_when_higher(self, alert_series, config):
        series = alert_series([(110.0, 111.0, 100.0), (112.0, 113.0, 110.0)])
        alert = detect_alert(series, 20, config)
        execution = Execution(executed=True, day=2, date=day(22), price=112.11)
        assert compute_stop_loss(alert, execution, series, config) == pytest.approx(112.11 * 0.98)

    def test_day_one_stop_uses_alert_day_low(self, alert_series, config):
        series = alert_series([(112.0, 112.0, 109.5)])
        alert = detect_alert(series, 20, config)
        execution = Execution(executed=True, day=1, date=day(21), price=111.1)
        # alert day low is 100, so the 2% floor wins
        assert compute_stop_loss(alert, execution, series, config) == pytest.approx(111.1 * 0.98)

    def test_lookback_outside_series_raises(self, flat_series, config):
        series = flat_series(5)
        alert = Alert(index=0, date=day(0), close=100.0, price_change_pct=10.0, volume=1.0, volume_sma=1.0, volume_ratio=1.0)
        with pytest.raises(IndexOutOfRange):
            compute_stop_loss(alert, Execution(executed=True, day=0, price=100.0), series, config)
        far = Alert(index=10, date=day(10), close=100.0, price_change_pct=10.0, volume=1.0, volume_sma=1.0, volume_ratio=1.0)
        with pytest.raises(IndexOutOfRange):
            compute_stop_loss(far, Execution(executed=True, day=1, price=100.0), series, config)

    def test_exit_stop_loss_hit(self, flat_series):
        series = flat_series(3)
        series[2] = candle(2, close=100.0, high=101.0, low=97.0)
        execution = Execution(executed=True, day=1, price=100.0)
        exit_ = resolve_exit(execution, 98.0, series, 1)
        assert exit_.exit_reason == STOP_LOSS_HIT
        assert exit_.exit_price == 98.0
        assert exit_.exit_date == day(2)
        assert exit_.pnl_pct == pytest.approx(-2.0)

    def test_exit_low_equal_to_stop_counts_as_hit(self, flat_series):
        series = flat_series(3)
        series[2] = candle(2, close=100.0, high=101.0, low=98.0)
        exit_ = resolve_exit(Execution(executed=True, day=1, price=100.0), 98.0, series, 1)
        assert exit_.exit_reason == STOP_LOSS_HIT

    def test_exit_next_day_close(self, flat_series):
        series = flat_series(3)
        series[2] = candle(2, close=103.0, high=104.0, low=99.0)
        exit_ = resolve_exit(Execution(executed=True, day=1, price=100.0), 98.0, series, 1)
        assert exit_.exit_reason == NEXT_DAY_CLOSE
        assert exit_.exit_price == 103.0
        assert exit_.pnl_pct == pytest.approx(3.0)

    def test_no_next_day_returns_none(self, flat_series):
        series = flat_series(2)
        assert resolve_exit(Execution(executed=True, day=1, price=100.0), 98.0, series, 1) is None


# ---------- scan ----------


class TestScan:
    def test_day_two_entry_then_stop_loss(self, alert_series, config):
        series = alert_series([
            (110.0, 111.0, 108.0),   # day 1: high 111 < 111.1
            (112.0, 113.0, 110.0),   # day 2: high 113 >= 112.11
            (109.5, 112.0, 109.0),   # day 3: low 109 <= stop
            (110.0, 111.0, 109.0),
        ])
        trades = scan(series, config, symbol="ABC")
        assert len(trades) == 1
        t = trades[0]

        entry = 111.0 * 1.01
        stop = max(108.0, entry * 0.98)
        assert t.symbol == "ABC"
        assert t.status == STATUS_STOP_LOSS
        assert t.entry_day == 2
        assert t.entry_price == pytest.approx(entry)
        assert t.stop_loss == pytest.approx(stop)
        assert t.exit_reason == "Stop Loss Hit"
        assert t.exit_date == day(23)
        assert t.exit_price == pytest.approx(stop)
        assert t.pnl_pct == pytest.approx((stop - entry) / entry * 100)
        assert t.pnl_pct < 0

    def test_day_one_entry_closed_next_day(self, alert_series, config):
        series = alert_series([(111.5, 112.0, 110.0), (115.0, 116.0, 111.0)])
        t = scan(series, config)[0]
        assert t.status == STATUS_NEXT_DAY_CLOSE
        assert t.entry_day == 1
        assert t.exit_price == 115.0
        assert t.pnl_pct == pytest.approx((115.0 - 111.1) / 111.1 * 100)

    def test_not_executed_trade(self, alert_series, config):
        series = alert_series([(109.0, 110.0, 108.0)] * 5)
        t = scan(series, config)[0]
        assert t.status == STATUS_NOT_EXECUTED
        assert not t.executed
        assert t.entry_day is None
        assert t.stop_loss is None
        assert t.exit_reason == "Entry price not reached in 4 days"
        row = t.to_row()
        assert row["entry_day"] == "N/A"
        assert row["exit_price"] == "N/A"
        assert row["pnl_pct"] == "N/A"

    def test_execution_on_last_day_left_open(self, alert_series, config):
        series = alert_series([(112.0, 112.0, 110.0)])
        t = scan(series, config)[0]
        assert t.status == STATUS_OPEN
        assert t.executed
        assert not t.closed
        assert t.exit_reason == OPEN_NO_NEXT_DAY
        assert t.exit_price is None
        assert t.stop_loss == pytest.approx(111.1 * 0.98)

    def test_alert_on_last_index_is_not_executed(self, alert_series, config):
        trades = scan(alert_series(), config)
        assert len(trades) == 1
        assert trades[0].status == STATUS_NOT_EXECUTED

    def test_skip_window_after_alert(self, alert_series, config):
        series = alert_series([
            (110.0, 111.0, 109.0),
            (110.0, 111.0, 109.0),
        ])
        series.append(candle(23, close=120.0, high=121.0, low=110.0, volume=3_000_000.0))
        series.append(candle(24, close=120.0, high=121.0, low=119.0))
        series.append(candle(25, close=120.0, high=121.0, low=119.0))
        series.append(candle(26, close=130.0, high=131.0, low=120.0, volume=3_000_000.0))
        series.append(candle(27, close=130.0, high=131.0, low=129.0))

        # index 23 qualifies on its own but sits inside the skip window
        assert detect_alert(series, 23, config) is not None
        assert detect_alert(series, 26, config) is not None

        trades = scan(series, config)
        assert [t.alert_date for t in trades] == [day(20), day(26)]

    def test_scan_is_idempotent(self, config):
        series = normalize(generate_mock_candles(seed=3))
        assert scan(series, config) == scan(series, config)

    def test_executed_trade_invariants(self, config):
        for seed in (1, 2, 3, 4, 5):
            series = normalize(generate_mock_candles(n=120, alert_days=(25, 40, 60, 90, 117), seed=seed))
            for t in scan(series, config):
                alert_index = next(i for i, c in enumerate(series) if c.date == t.alert_date)
                alert = detect_alert(series, alert_index, config)
                levels = build_entry_levels(alert, series, config)
                assert len(levels) <= config.max_entry_days
                if not t.executed:
                    assert all(lv.high < lv.entry_price for lv in levels)
                    continue
                fill = [lv for lv in levels if lv.day == t.entry_day][0]
                assert fill.entry_price == t.entry_price
                assert fill.high >= t.entry_price
                assert all(lv.high < lv.entry_price for lv in levels if lv.day < t.entry_day)
                assert t.stop_loss >= t.entry_price * (1 - config.stop_loss_pct / 100)
