import json

import pytest

from near_swap.config import OneClickConfig
from near_swap.execution.oneclick_client import (
    OneClickAPIError,
    OneClickClient,
    OneClickConfigError,
    to_smallest_unit,
)
from near_swap.execution.schemas import SwapRequest

TOKENS = [
    {"assetId": "nep141:btc.omft.near", "decimals": 8, "blockchain": "btc", "symbol": "BTC"},
    {"assetId": "nep141:eth-usdc.omft.near", "decimals": 6, "blockchain": "eth", "symbol": "USDC"},
    {"assetId": "nep141:sol-usdc.omft.near", "decimals": 6, "blockchain": "sol", "symbol": "USDC"},
    {"assetId": "nep141:wrap.near", "decimals": 24, "blockchain": "near", "symbol": "wNEAR"},
]


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self.content = self.text.encode()
        self.reason = "Bad Request" if status_code >= 400 else "OK"

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, routes):
        self.headers = {}
        self.routes = routes
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        path = url.split("://", 1)[1].split("/", 1)[1]
        return self.routes[(method, "/" + path)]


def make_client(routes):
    session = FakeSession(routes)
    client = OneClickClient(OneClickConfig(jwt_token="jwt-123", base_url="https://api.test/"), session=session)
    return client, session


QUOTE_OK = FakeResponse(
    body={
        "quote": {
            "depositAddress": "deposit-xyz",
            "amountInFormatted": "1.5",
            "amountOutFormatted": "4350.25",
            "depositMemo": None,
        }
    }
)


def swap_request(**overrides):
    fields = {
        "source_token": "btc",
        "dest_token": "usdc",
        "source_chain": "btc",
        "dest_chain": "eth",
        "amount": "1.5",
        "recipient_addr": "0xrecipient",
    }
    fields.update(overrides)
    return SwapRequest(**fields)


def test_requires_jwt():
    with pytest.raises(OneClickConfigError, match="JWT"):
        OneClickClient(OneClickConfig(jwt_token=None))


def test_get_quote_builds_request_body():
    client, session = make_client({("GET", "/v0/tokens"): FakeResponse(body=TOKENS), ("POST", "/v0/quote"): QUOTE_OK})

    quote = client.get_quote(swap_request())

    assert quote.deposit_address == "deposit-xyz"
    assert quote.amount_in == "1.5"
    assert quote.amount_out == "4350.25"
    assert session.headers["Authorization"] == "Bearer jwt-123"

    method, url, kwargs = session.calls[-1]
    assert (method, url) == ("POST", "https://api.test/v0/quote")
    body = kwargs["json"]
    assert body["originAsset"] == "nep141:btc.omft.near"
    assert body["destinationAsset"] == "nep141:eth-usdc.omft.near"
    assert body["amount"] == "150000000"
    assert body["refundTo"] == "0xrecipient"
    assert body["recipient"] == "0xrecipient"
    assert body["swapType"] == "EXACT_INPUT"
    assert body["slippageTolerance"] == 100
    assert body["depositType"] == "ORIGIN_CHAIN"
    assert body["recipientType"] == "DESTINATION_CHAIN"
    assert body["dry"] is False
    assert body["deadline"].endswith("Z")


def test_tokens_are_cached_between_quotes():
    client, session = make_client({("GET", "/v0/tokens"): FakeResponse(body=TOKENS), ("POST", "/v0/quote"): QUOTE_OK})

    client.get_quote(swap_request(dry=True, refund_addr="bc1refund"))
    client.get_quote(swap_request())

    assert [c[0] for c in session.calls] == ["GET", "POST", "POST"]
    assert session.calls[1][2]["json"]["refundTo"] == "bc1refund"
    assert session.calls[1][2]["json"]["dry"] is True

    client.clear_token_cache()
    client.get_tokens()
    assert [c[0] for c in session.calls].count("GET") == 2


def test_token_lookup():
    client, _ = make_client({("GET", "/v0/tokens"): FakeResponse(body=TOKENS)})

    assert client.find_token("usdc")["blockchain"] == "eth"
    assert client.find_token("near")["symbol"] == "wNEAR"
    assert client.find_token_on_chain("USDC", "SOL")["assetId"] == "nep141:sol-usdc.omft.near"
    with pytest.raises(OneClickConfigError, match="not found on chain 'near'"):
        client.find_token_on_chain("USDC", "near")
    with pytest.raises(OneClickConfigError, match="destination token error"):
        client.build_quote_body(swap_request(dest_token="DOGE"))


def test_api_error_message_is_surfaced():
    client, _ = make_client(
        {
            ("GET", "/v0/tokens"): FakeResponse(body=TOKENS),
            ("POST", "/v0/quote"): FakeResponse(status_code=400, body={"message": "Amount is too low"}),
        }
    )
    with pytest.raises(OneClickAPIError, match=r"API error \(status 400\): Amount is too low") as exc:
        client.get_quote(swap_request())
    assert exc.value.status_code == 400


def test_get_status_parses_swap_details():
    client, session = make_client(
        {
            ("GET", "/v0/status"): FakeResponse(
                body={
                    "status": "SUCCESS",
                    "swapDetails": {
                        "amountOutFormatted": "4349.9",
                        "destinationChainTxHashes": [{"hash": "0xabc", "explorerUrl": ""}],
                    },
                }
            )
        }
    )

    status = client.get_status("deposit-xyz")

    assert status.status == "SUCCESS"
    assert status.amount_out == "4349.9"
    assert status.destination_tx_hashes == ["0xabc"]
    assert session.calls[0][2]["params"] == {"depositAddress": "deposit-xyz"}


def test_submit_deposit_tx():
    client, session = make_client({("POST", "/v0/deposit/submit"): FakeResponse(body={"status": "PENDING"})})
    client.submit_deposit_tx("deposit-xyz", "txid-1")
    assert session.calls[0][2]["json"] == {"depositAddress": "deposit-xyz", "txHash": "txid-1"}


def test_to_smallest_unit_truncates():
    assert to_smallest_unit("0.123456789", 8) == "12345678"
    assert to_smallest_unit("2", 6) == "2000000"
    with pytest.raises(OneClickConfigError):
        to_smallest_unit("-1", 8)
