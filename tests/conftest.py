from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from near_swap.data.store import PlanStore
from near_swap.execution.schemas import Quote, SwapRequest, SwapStatus
from near_swap.plans.manager import PlanManager
from near_swap.plans.schemas import Plan, PlanStatus, PriceCondition


class FakeQuoteService:
    """Quotes at a fixed price; status answers come from a per-address queue."""

    def __init__(self, price: str = "3000", deposit_address: str = "dep-addr-1"):
        self.price = Decimal(price)
        self.deposit_address = deposit_address
        self.requests: List[SwapRequest] = []
        self.statuses: Dict[str, List[SwapStatus]] = {}
        self.status_calls: List[str] = []
        self.submitted: List[tuple] = []
        self.fail_quotes: Optional[Exception] = None

    def get_quote(self, request: SwapRequest) -> Quote:
        self.requests.append(request)
        if self.fail_quotes is not None:
            raise self.fail_quotes
        amount_in = Decimal(request.amount)
        return Quote(
            deposit_address="" if request.dry else self.deposit_address,
            amount_in=str(amount_in),
            amount_out=str(amount_in * self.price),
        )

    def get_status(self, deposit_address: str) -> SwapStatus:
        self.status_calls.append(deposit_address)
        queue = self.statuses.get(deposit_address) or []
        if len(queue) > 1:
            return queue.pop(0)
        if queue:
            return queue[0]
        return SwapStatus(status="PENDING_DEPOSIT")

    def submit_deposit_tx(self, deposit_address: str, tx_hash: str) -> None:
        self.submitted.append((deposit_address, tx_hash))

    @property
    def firm_requests(self) -> List[SwapRequest]:
        return [r for r in self.requests if not r.dry]


class FakeDepositor:
    def __init__(self, enabled: bool = True, error: Optional[Exception] = None):
        self.enabled = enabled
        self.error = error
        self.sent: List[tuple] = []

    def is_enabled_for(self, chain: str) -> bool:
        return self.enabled

    def send(self, chain: str, address: str, amount: str) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append((chain, address, amount))
        return f"tx-{len(self.sent)}"


PLAN_DEFAULTS = {
    "source_token": "BTC",
    "dest_token": "USDC",
    "source_chain": "btc",
    "dest_chain": "eth",
    "total_amount": "10",
    "amount_per_trade": "1",
    "amount_per_day": "2",
    "trigger_price": "3000",
    "price_condition": PriceCondition.below,
    "recipient_addr": "0xrecipient",
}


def make_plan(name: str = "btc-dca", **overrides) -> Plan:
    fields = {**PLAN_DEFAULTS, "remaining_amount": PLAN_DEFAULTS["total_amount"], "status": PlanStatus.active}
    fields.update(overrides)
    if "total_amount" in overrides and "remaining_amount" not in overrides:
        fields["remaining_amount"] = overrides["total_amount"]
    return Plan(name=name, **fields)


def create_plan(manager: PlanManager, name: str = "btc-dca", **overrides) -> Plan:
    return manager.create_plan(name, **{**PLAN_DEFAULTS, **overrides})


@pytest.fixture
def store(tmp_path):
    return PlanStore(tmp_path / "plans.json")


@pytest.fixture
def manager(store):
    return PlanManager(store)


@pytest.fixture
def quotes():
    return FakeQuoteService()


@pytest.fixture
def depositor():
    return FakeDepositor()
