from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .config import StrategyConfig
from .models import STATUS_NOT_EXECUTED, STATUS_OPEN, Trade
from .strategy import normalize, scan

# (row key, CSV title)
RESULT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("symbol", "Symbol"),
    ("alert_date", "Alert Date (D0)"),
    ("day0_close", "D0 Close"),
    ("price_change_pct", "Price Change %"),
    ("volume_ratio", "Volume Ratio"),
    ("entry_day", "Entry Day"),
    ("entry_date", "Entry Date"),
    ("entry_price", "Entry Price"),
    ("stop_loss", "Stop Loss"),
    ("exit_date", "Exit Date"),
    ("exit_price", "Exit Price"),
    ("exit_reason", "Exit Reason"),
    ("pnl_pct", "P&L %"),
)

@dataclass
class Statistics:
    total_alerts: int
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    avg_profit: float
    avg_loss: float
    total_pnl: float
    gross_profit: float
    gross_loss: float
    profit_factor: Optional[float]
    not_executed: int
    open_trades: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

def compute_statistics(trades: Iterable[Trade]) -> Statistics:
    """Win/loss statistics over executed trades with a resolved exit.

    Zero P&L counts as neither a win nor a loss. An empty set yields zeros.
    """
    trades = list(trades)
    not_executed = sum(1 for t in trades if t.status == STATUS_NOT_EXECUTED)
    open_trades = sum(1 for t in trades if t.status == STATUS_OPEN)
    pnls = [float(t.pnl_pct) for t in trades if t.closed]

    if not pnls:
        return Statistics(
            total_alerts=len(trades),
            total_trades=0,
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            avg_profit=0.0,
            avg_loss=0.0,
            total_pnl=0.0,
            gross_profit=0.0,
            gross_loss=0.0,
            profit_factor=None,
            not_executed=not_executed,
            open_trades=open_trades,
        )

    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_profit = float(sum(wins))
    gross_loss = float(-sum(losses))

    return Statistics(
        total_alerts=len(trades),
        total_trades=len(pnls),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(pnls) * 100.0,
        avg_profit=gross_profit / len(wins) if wins else 0.0,
        avg_loss=-gross_loss / len(losses) if losses else 0.0,
        total_pnl=float(sum(pnls)),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=gross_profit / gross_loss if gross_loss > 0 else None,
        not_executed=not_executed,
        open_trades=open_trades,
    )

class TradeLedger:
    """Append-only trade record for one backtest run."""

    def __init__(self) -> None:
        self._trades: List[Trade] = []

    def __len__(self) -> int:
        return len(self._trades)

    @property
    def trades(self) -> Tuple[Trade, ...]:
        return tuple(self._trades)

    def append(self, trades: Iterable[Trade]) -> None:
        batch = list(trades)
        for t in batch:
            if not isinstance(t, Trade):
                raise TypeError(f"ledger accepts Trade records, got {type(t).__name__}")
        self._trades.extend(batch)

    def stats(self) -> Statistics:
        return compute_statistics(self._trades)

    def summary_text(self) -> str:
        s = self.stats()
        rule = "=" * 50
        lines = [
            rule,
            "BACKTEST SUMMARY",
            rule,
            f"Total Alerts: {s.total_alerts}",
            f"Executed Trades: {s.total_trades}",
            f"Not Executed: {s.not_executed}",
            f"Open Trades: {s.open_trades}",
            f"Winning Trades: {s.winning_trades}",
            f"Losing Trades: {s.losing_trades}",
            f"Win Rate: {s.win_rate:.2f}%",
            f"Average Profit: {s.avg_profit:.2f}%",
            f"Average Loss: {s.avg_loss:.2f}%",
            f"Total P&L: {s.total_pnl:.2f}%",
            f"Profit Factor: {s.profit_factor:.2f}" if s.profit_factor is not None else "Profit Factor: N/A",
            rule,
        ]
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        keys = [k for k, _ in RESULT_COLUMNS]
        titles = {k: title for k, title in RESULT_COLUMNS}
        rows = [t.to_row() for t in self._trades]
        return pd.DataFrame(rows, columns=keys).rename(columns=titles)

class Backtester:
    def __init__(self, config: Optional[StrategyConfig] = None, ledger: Optional[TradeLedger] = None):
        self.config = config or StrategyConfig()
        self.config.validate()
        self.ledger = ledger if ledger is not None else TradeLedger()

    def run(self, symbol: str, raw_candles: Iterable[Any]) -> List[Trade]:
        """Normalize, scan and record one symbol; returns that symbol's trades."""
        series = normalize(raw_candles, tz_offset_minutes=self.config.tz_offset_minutes)
        logging.info("backtest %s: %d candles", symbol, len(series))

        trades = scan(series, self.config, symbol=symbol)
        for t in trades:
            logging.info(
                "alert %s %s: change=%.2f%% volume_ratio=%.2fx",
                symbol, t.alert_date, t.price_change_pct, t.volume_ratio,
            )
            if t.executed:
                logging.info(
                    "  entry day %s (%s) @ %.2f stop=%.2f -> %s",
                    t.entry_day, t.entry_date, t.entry_price, t.stop_loss, t.exit_reason,
                )
                if t.closed:
                    logging.info("  exit %s @ %.2f pnl=%.2f%%", t.exit_date, t.exit_price, t.pnl_pct)
            else:
                logging.info("  not executed: %s", t.exit_reason)

        executed = sum(1 for t in trades if t.executed)
        logging.info("backtest %s: alerts=%d executed=%d", symbol, len(trades), executed)

        self.ledger.append(trades)
        return trades
