from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

import requests

from .config import KiteSettings
from .errors import KiteAPIError, RateLimitError


class KiteClient:
    """Thin Kite Connect v3 client for daily candles.

    - Calls are spaced at least `min_delay_ms` apart.
    - HTTP 429 waits `rate_limit_wait_sec` and retries up to `max_retries` times.
    - Candles are returned raw ([timestamp, o, h, l, c, v]); normalization
      happens in the engine.
    """

    def __init__(self, settings: Optional[KiteSettings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or KiteSettings.from_env()
        self.session = session or requests.Session()
        self.access_token = self.settings.access_token
        self._last_call = 0.0

    def _headers(self) -> Dict[str, str]:
        headers = {"X-Kite-Version": "3"}
        if self.access_token:
            headers["Authorization"] = f"token {self.settings.api_key}:{self.access_token}"
        return headers

    def _rate_limit_delay(self) -> None:
        min_delay = float(self.settings.min_delay_ms) / 1000.0
        elapsed = time.monotonic() - self._last_call
        if elapsed < min_delay:
            time.sleep(min_delay - elapsed)
        self._last_call = time.monotonic()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.settings.base_url.rstrip('/')}/{path.lstrip('/')}"
        retries = 0
        while True:
            self._rate_limit_delay()
            resp = self.session.request(
                method, url, headers=self._headers(), timeout=self.settings.timeout_sec, **kwargs
            )
            if resp.status_code != 429:
                break
            retries += 1
            if retries > int(self.settings.max_retries):
                raise RateLimitError(f"{method} {path}: rate limited after {retries - 1} retries", 429)
            wait = float(self.settings.rate_limit_wait_sec)
            logging.warning("kite rate limit hit (%s/%s), waiting %.1fs", retries, self.settings.max_retries, wait)
            time.sleep(wait)

        if not resp.ok:
            raise KiteAPIError(f"{method} {path}: HTTP {resp.status_code} {_error_message(resp)}", resp.status_code)
        return resp

    def _json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = self._request(method, path, **kwargs)
        try:
            payload = resp.json()
        except ValueError:
            raise KiteAPIError(f"{method} {path}: invalid JSON response", resp.status_code) from None
        if payload.get("status") != "success":
            raise KiteAPIError(f"{method} {path}: {payload.get('message') or payload}", resp.status_code)
        return payload.get("data") or {}

    def login_url(self) -> str:
        query = urlencode({"v": 3, "api_key": self.settings.api_key})
        return f"{self.settings.login_base_url}?{query}"

    def generate_session(self, request_token: str) -> str:
        """Exchange a login request_token for an access token."""
        if not self.settings.api_key or not self.settings.api_secret:
            raise KiteAPIError("KITE_API_KEY and KITE_API_SECRET are required to generate a session")
        raw = f"{self.settings.api_key}{request_token}{self.settings.api_secret}"
        checksum = hashlib.sha256(raw.encode("utf-8")).hexdigest()
        data = self._json(
            "POST",
            "/session/token",
            data={"api_key": self.settings.api_key, "request_token": request_token, "checksum": checksum},
        )
        token = data.get("access_token")
        if not token:
            raise KiteAPIError("session response has no access_token")
        self.access_token = str(token)
        return self.access_token

    def get_historical_data(
        self,
        instrument_token: int,
        from_date: str,
        to_date: str,
        interval: str = "day",
    ) -> List[List[Any]]:
        """from_date/to_date: YYYY-MM-DD"""
        if not self.access_token:
            raise KiteAPIError("KITE_ACCESS_TOKEN is not set; run `day0-backtest session` first")
        data = self._json(
            "GET",
            f"/instruments/historical/{int(instrument_token)}/{interval}",
            params={"from": f"{from_date} 00:00:00", "to": f"{to_date} 23:59:59"},
        )
        return list(data.get("candles") or [])

    def download_instruments(self, path: Union[str, Path]) -> Path:
        """Save the public instruments dump (no auth required)."""
        resp = self._request("GET", "/instruments")
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(resp.text, encoding="utf-8")
        logging.info("instruments saved: %s", out)
        return out


def _error_message(resp: requests.Response) -> str:
    try:
        return str(resp.json().get("message") or "")
    except ValueError:
        return resp.text[:200]
