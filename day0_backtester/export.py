from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .backtester import TradeLedger

def save_results_csv(
    ledger: TradeLedger,
    results_dir: Union[str, Path] = "data/results",
    now: Optional[datetime] = None,
) -> Path:
    """Write the ledger to results_dir/backtest_results_<timestamp>.csv."""
    out_dir = Path(results_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    path = out_dir / f"backtest_results_{stamp}.csv"
    ledger.to_frame().to_csv(path, index=False)
    logging.info("results saved: %s (%d rows)", path, len(ledger))
    return path

def load_candles_csv(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read a local OHLCV CSV (date/open/high/low/close/volume columns).

    Column names are matched case-insensitively; values are left as read so
    that normalization reports malformed cells.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in ("date", "open", "high", "low", "close", "volume") if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing columns {missing}")
    return df[["date", "open", "high", "low", "close", "volume"]].to_dict("records")
