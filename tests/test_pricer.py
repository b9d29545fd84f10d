from decimal import Decimal

import pytest

from conftest import FakeQuoteService, make_plan
from near_swap.execution.schemas import Quote
from near_swap.plans.pricer import Pricer, PricingError, probe_amount
from near_swap.plans.schemas import PlanStatus, PriceCondition


@pytest.mark.parametrize(
    "condition, trigger, price, expected",
    [
        (PriceCondition.below, "3000", "2999.99", True),
        (PriceCondition.below, "3000", "3000", True),
        (PriceCondition.below, "3000", "3000.01", False),
        (PriceCondition.above, "3000", "3000.01", True),
        (PriceCondition.above, "3000", "2999.99", False),
        (PriceCondition.at, "100", "100.4", True),
        (PriceCondition.at, "100", "99.5", True),
        (PriceCondition.at, "100", "101.0", False),
    ],
)
def test_evaluate(condition, trigger, price, expected):
    plan = make_plan(price_condition=condition, trigger_price=trigger)
    assert Pricer.evaluate(plan, Decimal(price)) is expected


def test_get_price_uses_dry_probe_quote():
    quotes = FakeQuoteService(price="2950")
    info = Pricer(quotes).get_price(make_plan(amount_per_trade="1"))

    assert info.price == Decimal("2950")
    assert info.price_str == "2950.00000000"
    assert info.pair == "USDC/BTC"
    (request,) = quotes.requests
    assert request.dry is True
    assert request.amount == "0.10000000"
    assert request.recipient_addr == "0xrecipient"


def test_probe_amount_has_a_floor():
    assert probe_amount(make_plan(amount_per_trade="0.05")) == Decimal("0.01")
    assert probe_amount(make_plan(amount_per_trade="2")) == Decimal("0.2")


def test_get_price_wraps_quote_errors():
    quotes = FakeQuoteService()
    quotes.fail_quotes = RuntimeError("API error (status 400): unsupported pair")
    with pytest.raises(PricingError, match="unsupported pair"):
        Pricer(quotes).get_price(make_plan())


def test_get_price_rejects_zero_input():
    class ZeroQuotes(FakeQuoteService):
        def get_quote(self, request):
            return Quote(amount_in="0", amount_out="10")

    with pytest.raises(PricingError, match="invalid amount in"):
        Pricer(ZeroQuotes()).get_price(make_plan())


def test_should_execute_skips_quote_for_inactive_plan():
    quotes = FakeQuoteService(price="100")
    assert Pricer(quotes).should_execute(make_plan(status=PlanStatus.paused)) == (False, None)
    assert quotes.requests == []

    triggered, info = Pricer(quotes).should_execute(make_plan())
    assert triggered is True
    assert info.price == Decimal("100")
