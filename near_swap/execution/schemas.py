"""Swap-layer schemas and the two capability interfaces the scheduler depends on.

The scheduler never talks to a concrete API or wallet. It is handed a
``QuoteService`` (prices, firm quotes, settlement status) and optionally a
``Depositor`` (moves funds to a deposit address).
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class SwapRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_token: str
    dest_token: str
    source_chain: str = ""
    dest_chain: str = ""
    amount: str = Field(..., description="Human-unit amount of the source token.")
    recipient_addr: str
    refund_addr: str = ""
    dry: bool = Field(False, description="Indicative quote; no deposit address is reserved.")


class Quote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    deposit_address: str = ""
    amount_in: str
    amount_out: str
    memo: Optional[str] = None


class SwapStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    amount_out: Optional[str] = None
    destination_tx_hashes: List[str] = Field(default_factory=list)


@runtime_checkable
class QuoteService(Protocol):
    def get_quote(self, request: SwapRequest) -> Quote: ...

    def get_status(self, deposit_address: str) -> SwapStatus: ...


@runtime_checkable
class Depositor(Protocol):
    def is_enabled_for(self, chain: str) -> bool: ...

    def send(self, chain: str, address: str, amount: str) -> str: ...


__all__ = ["Depositor", "Quote", "QuoteService", "SwapRequest", "SwapStatus"]
