from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from .errors import InstrumentNotFound


@dataclass(frozen=True)
class Instrument:
    instrument_token: int
    tradingsymbol: str
    name: str
    exchange: str


def load_instruments(path: Union[str, Path], exchange: str = "NSE") -> List[Instrument]:
    """Equity instruments for `exchange` from a Kite instruments dump.

    The public dump is comma-separated; saved copies are sometimes
    tab-separated, so the delimiter is taken from the header line.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} not found; run `day0-backtest download-instruments` first")

    with path.open("r", encoding="utf-8") as f:
        header = f.readline()
    sep = "\t" if "\t" in header else ","
    df = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    for col in ("instrument_token", "tradingsymbol"):
        if col not in df.columns:
            raise ValueError(f"{path}: missing column {col}")

    def col(name: str) -> pd.Series:
        if name in df.columns:
            return df[name].astype(str).str.strip()
        return pd.Series([""] * len(df), index=df.index)

    is_equity = col("instrument_type") == "EQ"
    on_exchange = (col("exchange") == exchange) | (col("segment") == exchange)
    rows = df[is_equity & on_exchange]

    out: List[Instrument] = []
    for _, r in rows.iterrows():
        try:
            token = int(float(str(r["instrument_token"]).strip()))
        except ValueError:
            continue
        symbol = str(r["tradingsymbol"]).strip()
        name = str(r.get("name", "") or "").strip() or symbol
        out.append(Instrument(instrument_token=token, tradingsymbol=symbol, name=name, exchange=exchange))

    logging.info("loaded %d %s equity instruments from %s", len(out), exchange, path)
    return out


class InstrumentDirectory:
    """Lazily loaded, cached symbol -> Instrument lookup."""

    def __init__(self, path: Union[str, Path], exchange: str = "NSE"):
        self.path = Path(path)
        self.exchange = exchange
        self._by_symbol: Optional[Dict[str, Instrument]] = None

    def _load(self) -> Dict[str, Instrument]:
        if self._by_symbol is None:
            self._by_symbol = {i.tradingsymbol: i for i in load_instruments(self.path, self.exchange)}
        return self._by_symbol

    def __len__(self) -> int:
        return len(self._load())

    def lookup(self, symbol: str) -> Instrument:
        inst = self._load().get(str(symbol).strip())
        if inst is None:
            raise InstrumentNotFound(f"{symbol} not found on {self.exchange} in {self.path}")
        return inst
