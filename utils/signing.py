# -------------------------------------------------------------------
#  🔐  utils/signing.py  – helpers for the OKX v5 request signature.
# -------------------------------------------------------------------
"""OKX signs every private call with:

   1. prehash = timestamp + METHOD + requestPath(+query) + body
   2. HmacSHA256(secret_key, prehash)
   3. base64 of the raw digest

``timestamp`` is the ISO-8601 UTC time with millisecond precision, the same
string that goes into the ``OK-ACCESS-TIMESTAMP`` header."""
from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Dict

__all__ = ["iso_timestamp", "prehash", "generate_signature", "auth_headers"]


def iso_timestamp() -> str:
    """e.g. 2026-01-02T03:04:05.678Z"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def prehash(timestamp: str, method: str, request_path: str, body: str = "") -> str:
    return f"{timestamp}{method.upper()}{request_path}{body}"


def generate_signature(timestamp: str, method: str, request_path: str, body: str, secret_key: str) -> str:
    """Return the base64 HMAC-SHA256 ``OK-ACCESS-SIGN`` value."""
    message = prehash(timestamp, method, request_path, body)
    digest = hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def auth_headers(
    api_key: str,
    secret_key: str,
    passphrase: str,
    method: str,
    request_path: str,
    body: str = "",
    *,
    demo: bool = False,
    timestamp: str | None = None,
) -> Dict[str, str]:
    ts = timestamp or iso_timestamp()
    headers = {
        "OK-ACCESS-KEY": api_key,
        "OK-ACCESS-SIGN": generate_signature(ts, method, request_path, body, secret_key),
        "OK-ACCESS-TIMESTAMP": ts,
        "OK-ACCESS-PASSPHRASE": passphrase,
        "Content-Type": "application/json",
    }
    if demo:
        headers["x-simulated-trading"] = "1"
    return headers
