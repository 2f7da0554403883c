# modules/okx_client.py
"""
Signed OKX v5 REST client: price, balances, market orders and order lookup.

Transport problems (network, HTTP status, non-zero top-level ``code``) raise
ExchangeError.  An order the exchange rejects per-order (``sCode != "0"``)
comes back as ``OrderResult(success=False)`` so the caller can journal it.
"""
from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from modules.errors import ExchangeError
from utils.signing import auth_headers


@dataclass
class Balance:
    available: float
    total: float


@dataclass
class OrderResult:
    success: bool
    order_id: Optional[str] = None
    code: Optional[str] = None
    message: str = ""
    client_order_id: Optional[str] = None


@dataclass
class OrderFill:
    order_id: str
    state: str
    avg_price: float
    filled_size: float
    fee: float
    fee_currency: str = ""

    @property
    def is_filled(self) -> bool:
        return self.state in {"filled", "partially_filled"} and self.filled_size > 0


class OKXClient:
    def __init__(
        self,
        api_key: str,
        secret_key: str,
        passphrase: str,
        base_url: str = "https://www.okx.com",
        *,
        api_version: str = "api/v5",
        demo: bool = False,
        timeout: float = 10,
        logger: Optional[logging.Logger] = None,
    ):
        if not api_key:
            raise ValueError("OKXClient: api_key is missing")
        if not secret_key:
            raise ValueError("OKXClient: secret_key is missing")
        if not passphrase:
            raise ValueError("OKXClient: passphrase is missing")

        self.api_key = api_key
        self.secret_key = secret_key
        self.passphrase = passphrase
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version.strip("/")
        self.demo = demo
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    # -------------------------------------------------------------- #
    # transport
    # -------------------------------------------------------------- #
    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a signed request and return the decoded JSON envelope."""
        method = method.upper()
        request_path = f"/{self.api_version}{endpoint}"
        if params:
            request_path += "?" + urllib.parse.urlencode(params)
        payload = json.dumps(body) if body is not None else ""

        headers = auth_headers(
            self.api_key, self.secret_key, self.passphrase,
            method, request_path, payload, demo=self.demo,
        )
        url = self.base_url + request_path
        try:
            resp = requests.request(
                method, url, headers=headers, data=payload or None, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ExchangeError(f"Network error: no response from OKX ({exc})") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        self.logger.debug("OKX %s %s -> %s %s", method, request_path, resp.status_code, data)

        if resp.status_code >= 400:
            msg = data.get("msg") if isinstance(data, dict) else None
            raise ExchangeError(f"HTTP {resp.status_code}: {msg or resp.reason}", code=str(resp.status_code))
        if not isinstance(data, dict):
            raise ExchangeError("Malformed OKX response")
        return data

    def _data(self, envelope: Dict[str, Any]) -> List[Dict[str, Any]]:
        code = str(envelope.get("code"))
        if code != "0":
            raise ExchangeError(f"OKX API error: {envelope.get('msg')} (code {code})", code=code)
        return envelope.get("data") or []

    # -------------------------------------------------------------- #
    # market / account
    # -------------------------------------------------------------- #
    def get_price(self, symbol: str) -> float:
        data = self._data(self._request("GET", "/market/ticker", {"instId": symbol}))
        if not data:
            raise ExchangeError(f"No price data found for {symbol}")
        return float(data[0]["last"])

    def get_balances(self) -> Dict[str, Balance]:
        data = self._data(self._request("GET", "/account/balance"))
        balances: Dict[str, Balance] = {}
        if data:
            for detail in data[0].get("details", []):
                balances[detail["ccy"]] = Balance(
                    available=float(detail.get("availBal") or 0),
                    total=float(detail.get("bal") or detail.get("cashBal") or 0),
                )
        return balances

    def get_instrument_info(self, symbol: str) -> Optional[Dict[str, Any]]:
        data = self._data(
            self._request("GET", "/public/instruments", {"instType": "SPOT", "instId": symbol})
        )
        if not data:
            return None
        inst = data[0]
        return {
            "symbol": inst.get("instId"),
            "base_currency": inst.get("baseCcy"),
            "quote_currency": inst.get("quoteCcy"),
            "tick_size": float(inst.get("tickSz") or 0),
            "lot_size": float(inst.get("lotSz") or 0),
            "min_size": float(inst.get("minSz") or 0),
            "state": inst.get("state"),
        }

    # -------------------------------------------------------------- #
    # orders
    # -------------------------------------------------------------- #
    def place_order(
        self,
        symbol: str,
        side: str,
        amount: float,
        *,
        order_type: str = "market",
        price: Optional[float] = None,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        """Cash-mode spot order.

        * ``side``   – "buy" or "sell" (case-insensitive)
        * ``amount`` – quote currency for market buys (``tgtCcy=quote_ccy``),
          base currency otherwise
        * ``price``  – required for limit orders
        """
        side = side.lower()
        body: Dict[str, Any] = {
            "instId": symbol,
            "tdMode": "cash",
            "side": side,
            "ordType": order_type,
            "sz": str(amount),
        }
        if side == "buy" and order_type == "market":
            body["tgtCcy"] = "quote_ccy"
        if price is not None:
            body["px"] = str(price)
        if client_order_id:
            body["clOrdId"] = client_order_id

        envelope = self._request("POST", "/trade/order", body=body)
        rows = envelope.get("data") or []
        if not rows:
            # top-level failure with no per-order detail
            self._data(envelope)
            return OrderResult(success=False, message="No order response received")

        row = rows[0]
        s_code = str(row.get("sCode", envelope.get("code")))
        result = OrderResult(
            success=s_code == "0",
            order_id=row.get("ordId") or None,
            code=s_code,
            message=row.get("sMsg") or envelope.get("msg") or "",
            client_order_id=row.get("clOrdId") or None,
        )
        if result.success:
            self.logger.info("✅ %s order accepted: %s %s (ordId %s)", side.upper(), amount, symbol, result.order_id)
        else:
            self.logger.error("❌ %s order rejected: %s (code %s)", side.upper(), result.message, s_code)
        return result

    def get_order(self, symbol: str, order_id: str) -> Optional[OrderFill]:
        data = self._data(self._request("GET", "/trade/order", {"instId": symbol, "ordId": order_id}))
        if not data:
            return None
        row = data[0]
        return OrderFill(
            order_id=row.get("ordId", order_id),
            state=row.get("state", ""),
            avg_price=float(row.get("avgPx") or 0),
            filled_size=float(row.get("accFillSz") or 0),
            fee=abs(float(row.get("fee") or 0)),
            fee_currency=row.get("feeCcy", ""),
        )

