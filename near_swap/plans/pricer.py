"""Price discovery from probe quotes and trigger evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from near_swap.execution.schemas import QuoteService, SwapRequest
from near_swap.plans.schemas import AT_PRICE_TOLERANCE, Plan, PriceCondition, format_amount, to_decimal

PROBE_FRACTION = Decimal("0.1")
MIN_PROBE_AMOUNT = Decimal("0.01")


class PricingError(RuntimeError):
    pass


@dataclass(frozen=True)
class PriceInfo:
    """Destination tokens per one source token."""

    price: Decimal
    source_token: str
    dest_token: str
    source_chain: str = ""
    dest_chain: str = ""

    @property
    def price_str(self) -> str:
        return format_amount(self.price)

    @property
    def pair(self) -> str:
        return f"{self.dest_token}/{self.source_token}"


def probe_amount(plan: Plan) -> Decimal:
    amount = to_decimal(plan.amount_per_trade, Decimal(0)) * PROBE_FRACTION
    return amount if amount >= MIN_PROBE_AMOUNT else MIN_PROBE_AMOUNT


def price_from_amounts(amount_in: str, amount_out: str) -> Decimal:
    try:
        a_in = to_decimal(amount_in)
        a_out = to_decimal(amount_out)
    except ValueError as e:
        raise PricingError(f"failed to parse quote amounts: {e}") from e
    if a_in <= 0:
        raise PricingError(f"invalid amount in: {amount_in}")
    return a_out / a_in


class Pricer:
    def __init__(self, quote_service: QuoteService):
        self.quote_service = quote_service

    def get_price(self, plan: Plan) -> PriceInfo:
        """Probe with a dry quote for 10% of one trade (at least 0.01 units)."""
        request = SwapRequest(
            source_token=plan.source_token,
            dest_token=plan.dest_token,
            source_chain=plan.source_chain,
            dest_chain=plan.dest_chain,
            amount=format_amount(probe_amount(plan)),
            recipient_addr=plan.recipient_addr,
            refund_addr=plan.refund_addr,
            dry=True,
        )
        try:
            quote = self.quote_service.get_quote(request)
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise PricingError(f"failed to get quote: {e}") from e

        return PriceInfo(
            price=price_from_amounts(quote.amount_in, quote.amount_out),
            source_token=plan.source_token,
            dest_token=plan.dest_token,
            source_chain=plan.source_chain,
            dest_chain=plan.dest_chain,
        )

    @staticmethod
    def evaluate(plan: Plan, price: Decimal) -> bool:
        try:
            trigger = to_decimal(plan.trigger_price)
        except ValueError as e:
            raise PricingError(f"invalid trigger price: {e}") from e

        condition = plan.price_condition
        if condition == PriceCondition.above:
            return price >= trigger
        if condition == PriceCondition.below:
            return price <= trigger
        if condition == PriceCondition.at:
            return abs(price - trigger) <= trigger * AT_PRICE_TOLERANCE
        raise PricingError(f"unknown price condition: {condition}")

    def should_execute(self, plan: Plan) -> Tuple[bool, Optional[PriceInfo]]:
        if not plan.can_execute():
            return False, None
        info = self.get_price(plan)
        return self.evaluate(plan, info.price), info


__all__ = ["MIN_PROBE_AMOUNT", "PriceInfo", "Pricer", "PricingError", "price_from_amounts", "probe_amount"]
