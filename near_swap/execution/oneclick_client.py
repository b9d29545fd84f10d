"""1Click (NEAR Intents) REST client.

Only this layer should ever touch the 1Click JWT. It implements the
``QuoteService`` interface used by the pricer and the scheduler and is
strategy-neutral: it resolves token symbols to asset ids, converts human
amounts to smallest units and maps responses to ``Quote`` / ``SwapStatus``.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from near_swap.config import OneClickConfig
from near_swap.data.audit import AuditContext, AuditManager
from near_swap.execution.schemas import Quote, SwapRequest, SwapStatus

QUOTE_DEADLINE = timedelta(hours=24)
SLIPPAGE_BPS = 100  # 1%
TOKENS_TTL_S = 300.0


class OneClickConfigError(RuntimeError):
    pass


class OneClickAPIError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(res: requests.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if isinstance(body.get("message"), str):
            return body["message"]
        if body.get("errors") is not None:
            return str(body["errors"])
    return (res.text or "").strip() or res.reason or "unknown error"


def to_smallest_unit(amount: str, decimals: int) -> str:
    """``"1.5"`` with 8 decimals -> ``"150000000"`` (truncated, never rounded up)."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise OneClickConfigError(f"invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise OneClickConfigError(f"invalid amount: {amount!r}")
    scaled = (value * (Decimal(10) ** int(decimals))).to_integral_value(rounding=ROUND_DOWN)
    return str(int(scaled))


class OneClickClient:
    """Thin wrapper over the 1Click v0 endpoints."""

    def __init__(
        self,
        config: OneClickConfig,
        *,
        session: Optional[requests.Session] = None,
        tokens_ttl_s: float = TOKENS_TTL_S,
        audit: Optional[AuditManager] = None,
    ):
        if not config.jwt_token:
            raise OneClickConfigError("Missing 1Click JWT. Set NEAR_SWAP_JWT_TOKEN in .env.")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.jwt_token}",
                "Accept": "application/json",
            }
        )
        self.tokens_ttl_s = tokens_ttl_s
        self.audit = audit or AuditManager("near_swap.execution.oneclick")
        self._ctx = AuditContext(component="oneclick")
        self._tokens: Optional[List[Dict[str, Any]]] = None
        self._tokens_at = 0.0
        self._tokens_lock = threading.Lock()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            res = self.session.request(method, url, timeout=self.config.timeout_s, **kwargs)
        except requests.RequestException as e:
            raise OneClickAPIError(f"request to {path} failed: {e}") from e
        if not 200 <= res.status_code < 300:
            raise OneClickAPIError(
                f"API error (status {res.status_code}): {_error_message(res)}",
                status_code=res.status_code,
            )
        if not res.content:
            return None
        try:
            return res.json()
        except ValueError as e:
            raise OneClickAPIError(f"invalid JSON from {path}: {e}", status_code=res.status_code) from e

    # ---- tokens -------------------------------------------------------------

    def get_tokens(self, *, refresh: bool = False) -> List[Dict[str, Any]]:
        with self._tokens_lock:
            fresh = self._tokens is not None and time.monotonic() - self._tokens_at < self.tokens_ttl_s
            if fresh and not refresh:
                return list(self._tokens or [])
        data = self._request("GET", "/v0/tokens")
        if not isinstance(data, list):
            raise OneClickAPIError("unexpected /v0/tokens response")
        with self._tokens_lock:
            self._tokens = data
            self._tokens_at = time.monotonic()
        return list(data)

    def clear_token_cache(self) -> None:
        with self._tokens_lock:
            self._tokens = None
            self._tokens_at = 0.0

    def find_token(self, symbol: str) -> Dict[str, Any]:
        """Exact symbol match on any chain, then the first partial match."""
        wanted = symbol.strip().upper()
        tokens = self.get_tokens()
        for t in tokens:
            if str(t.get("symbol", "")).upper() == wanted:
                return t
        for t in tokens:
            if wanted in str(t.get("symbol", "")).upper():
                return t
        raise OneClickConfigError(f"token '{wanted}' not found")

    def find_token_on_chain(self, symbol: str, chain: str) -> Dict[str, Any]:
        wanted = symbol.strip().upper()
        chain = chain.strip().lower()
        for t in self.get_tokens():
            if str(t.get("symbol", "")).upper() == wanted and str(t.get("blockchain", "")).lower() == chain:
                return t
        raise OneClickConfigError(f"token '{wanted}' not found on chain '{chain}'")

    def _resolve(self, symbol: str, chain: str) -> Dict[str, Any]:
        return self.find_token_on_chain(symbol, chain) if chain else self.find_token(symbol)

    # ---- QuoteService ---------------------------------------------------------

    def build_quote_body(self, request: SwapRequest) -> Dict[str, Any]:
        if not request.recipient_addr:
            raise OneClickConfigError("recipient address is required")
        try:
            source = self._resolve(request.source_token, request.source_chain)
        except OneClickConfigError as e:
            raise OneClickConfigError(f"source token error: {e}") from e
        try:
            dest = self._resolve(request.dest_token, request.dest_chain)
        except OneClickConfigError as e:
            raise OneClickConfigError(f"destination token error: {e}") from e

        deadline = datetime.now(timezone.utc) + QUOTE_DEADLINE
        return {
            "dry": bool(request.dry),
            "swapType": "EXACT_INPUT",
            "slippageTolerance": SLIPPAGE_BPS,
            "originAsset": source.get("assetId"),
            "depositType": "ORIGIN_CHAIN",
            "destinationAsset": dest.get("assetId"),
            "amount": to_smallest_unit(request.amount, int(source.get("decimals") or 0)),
            "refundTo": request.refund_addr or request.recipient_addr,
            "refundType": "ORIGIN_CHAIN",
            "recipient": request.recipient_addr,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": deadline.isoformat().replace("+00:00", "Z"),
        }

    def get_quote(self, request: SwapRequest) -> Quote:
        body = self.build_quote_body(request)
        data = self._request("POST", "/v0/quote", json=body) or {}
        quote = data.get("quote") if isinstance(data, dict) else None
        if not isinstance(quote, dict):
            raise OneClickAPIError("empty quote response")
        self.audit.debug(
            "quote_received",
            {
                "pair": f"{request.source_token}->{request.dest_token}",
                "dry": request.dry,
                "amount_in": quote.get("amountInFormatted"),
                "amount_out": quote.get("amountOutFormatted"),
            },
            ctx=self._ctx,
        )
        return Quote(
            deposit_address=quote.get("depositAddress") or "",
            amount_in=str(quote.get("amountInFormatted") or "0"),
            amount_out=str(quote.get("amountOutFormatted") or "0"),
            memo=quote.get("depositMemo"),
        )

    def get_status(self, deposit_address: str) -> SwapStatus:
        data = self._request("GET", "/v0/status", params={"depositAddress": deposit_address}) or {}
        details = data.get("swapDetails") or {}
        hashes = [
            h.get("hash")
            for h in (details.get("destinationChainTxHashes") or [])
            if isinstance(h, dict) and h.get("hash")
        ]
        return SwapStatus(
            status=str(data.get("status") or ""),
            amount_out=details.get("amountOutFormatted"),
            destination_tx_hashes=hashes,
        )

    def submit_deposit_tx(self, deposit_address: str, tx_hash: str) -> None:
        """Tell 1Click about an outbound deposit so it can settle faster."""
        self._request(
            "POST",
            "/v0/deposit/submit",
            json={"depositAddress": deposit_address, "txHash": tx_hash},
        )


__all__ = [
    "OneClickAPIError",
    "OneClickClient",
    "OneClickConfigError",
    "QUOTE_DEADLINE",
    "SLIPPAGE_BPS",
    "to_smallest_unit",
]
