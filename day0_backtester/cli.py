from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Any, List, Optional

import requests
from dotenv import load_dotenv

from .backtester import Backtester
from .config import KiteSettings, StrategyConfig
from .errors import Day0Error
from .export import load_candles_csv, save_results_csv
from .instruments import InstrumentDirectory
from .kite_client import KiteClient
from .mock_data import generate_mock_candles

def _p(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))

def _strategy_config(args: argparse.Namespace) -> StrategyConfig:
    return StrategyConfig.from_env(
        price_spike_pct=args.price_spike,
        volume_multiplier=args.volume_multiplier,
        volume_sma_period=args.volume_sma_period,
        entry_premium_pct=args.entry_premium,
        max_entry_days=args.max_entry_days,
        stop_loss_pct=args.stop_loss,
    )

def _finish(bt: Backtester, results_dir: Optional[str]) -> None:
    print(bt.ledger.summary_text())
    if results_dir:
        path = save_results_csv(bt.ledger, results_dir)
        print(f"Results saved to: {path}")

def cmd_login_url(args: argparse.Namespace) -> None:
    client = KiteClient(KiteSettings.from_env())
    print(client.login_url())
    print("After login, copy request_token from the redirect URL and run:")
    print("  day0-backtest session --request-token <TOKEN>")

def cmd_session(args: argparse.Namespace) -> None:
    client = KiteClient(KiteSettings.from_env())
    token = client.generate_session(args.request_token)
    _p({"ok": True, "access_token": token, "env": f"KITE_ACCESS_TOKEN={token}"})

def cmd_download_instruments(args: argparse.Namespace) -> None:
    settings = KiteSettings.from_env()
    client = KiteClient(settings)
    path = client.download_instruments(args.out or settings.instruments_csv)
    _p({"ok": True, "path": str(path)})

def cmd_backtest(args: argparse.Namespace) -> None:
    settings = KiteSettings.from_env()
    client = KiteClient(settings)
    directory = InstrumentDirectory(args.instruments or settings.instruments_csv, exchange=settings.exchange)
    bt = Backtester(_strategy_config(args))

    start = args.start or settings.start_date
    end = args.end or settings.end_date
    logging.info("date range %s .. %s; symbols=%s", start, end, ",".join(args.symbols))

    for symbol in args.symbols:
        try:
            inst = directory.lookup(symbol)
            candles = client.get_historical_data(inst.instrument_token, start, end)
            if not candles:
                logging.warning("no data for %s", symbol)
                continue
            bt.run(symbol, candles)
        except (Day0Error, requests.RequestException) as exc:
            logging.warning("%s skipped: %s", symbol, exc)
            continue
        if args.pause > 0:
            time.sleep(args.pause)

    _finish(bt, args.results_dir or settings.results_dir)

def cmd_backtest_csv(args: argparse.Namespace) -> None:
    bt = Backtester(_strategy_config(args))
    bt.run(args.symbol, load_candles_csv(args.csv))
    _finish(bt, args.results_dir)

def cmd_demo(args: argparse.Namespace) -> None:
    bt = Backtester(_strategy_config(args))
    bt.run("TEST_STOCK", generate_mock_candles(n=args.bars, seed=args.seed))
    _finish(bt, args.results_dir)

def _add_strategy_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("strategy (default: env or built-in)")
    g.add_argument("--price-spike", type=float, default=None, help="Day 0 close-to-close change %% (default 6)")
    g.add_argument("--volume-multiplier", type=float, default=None, help="Volume vs trailing SMA (default 2)")
    g.add_argument("--volume-sma-period", type=int, default=None, help="Volume SMA lookback bars (default 20)")
    g.add_argument("--entry-premium", type=float, default=None, help="Entry premium %% over reference (default 1)")
    g.add_argument("--max-entry-days", type=int, default=None, help="Days to wait for entry (default 4)")
    g.add_argument("--stop-loss", type=float, default=None, help="Stop loss %% below entry (default 2)")

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="day0-backtest", description="Day 0 price/volume spike backtester (daily bars).")
    p.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    p.add_argument("--env-file", default=".env", help="dotenv file with KITE_* settings (default: .env)")

    sub = p.add_subparsers(dest="cmd", required=True)

    p_login = sub.add_parser("login-url", help="Print the Kite Connect login URL")
    p_login.set_defaults(func=cmd_login_url)

    p_sess = sub.add_parser("session", help="Exchange a request_token for an access token")
    p_sess.add_argument("--request-token", required=True)
    p_sess.set_defaults(func=cmd_session)

    p_inst = sub.add_parser("download-instruments", help="Save the instruments dump to CSV")
    p_inst.add_argument("--out", default=None, help="Output path (default: INSTRUMENTS_CSV)")
    p_inst.set_defaults(func=cmd_download_instruments)

    p_bt = sub.add_parser("backtest", help="Fetch daily candles from Kite and backtest symbols")
    p_bt.add_argument("--symbols", nargs="+", required=True)
    p_bt.add_argument("--start", default=None, help="YYYY-MM-DD (default: START_DATE)")
    p_bt.add_argument("--end", default=None, help="YYYY-MM-DD (default: END_DATE)")
    p_bt.add_argument("--instruments", default=None, help="Instruments CSV (default: INSTRUMENTS_CSV)")
    p_bt.add_argument("--results-dir", default=None, help="CSV output dir (default: RESULTS_DIR)")
    p_bt.add_argument("--pause", type=float, default=1.0, help="Seconds between symbols")
    _add_strategy_args(p_bt)
    p_bt.set_defaults(func=cmd_backtest)

    p_csv = sub.add_parser("backtest-csv", help="Backtest one symbol from a local OHLCV CSV")
    p_csv.add_argument("--csv", required=True)
    p_csv.add_argument("--symbol", required=True)
    p_csv.add_argument("--results-dir", default=None, help="Write results CSV here")
    _add_strategy_args(p_csv)
    p_csv.set_defaults(func=cmd_backtest_csv)

    p_demo = sub.add_parser("demo", help="Backtest synthetic candles with planted alerts")
    p_demo.add_argument("--bars", type=int, default=100)
    p_demo.add_argument("--seed", type=int, default=7)
    p_demo.add_argument("--results-dir", default=None, help="Write results CSV here")
    _add_strategy_args(p_demo)
    p_demo.set_defaults(func=cmd_demo)

    return p

def main(argv: Optional[List[str]] = None) -> None:
    p = build_parser()
    args = p.parse_args(argv)
    load_dotenv(args.env_file)
    logging.basicConfig(level=str(args.log_level).upper(), format="%(asctime)s [%(levelname)s] %(message)s")
    args.func(args)

if __name__ == "__main__":
    main()
