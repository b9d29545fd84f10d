"""Auto-deposit: send source funds to a 1Click deposit address.

``DepositManager`` is the ``Depositor`` the scheduler sees. It routes by chain
alias to a wallet-specific sender:

- bitcoin / zcash: the node's wallet CLI (``getbalance`` then ``sendtoaddress``)
- monero: ``monero-wallet-rpc`` JSON-RPC (``get_balance`` then ``transfer``)

Nothing here constructs or signs transactions; the local wallet does.
"""

from __future__ import annotations

import json
import subprocess
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from requests.auth import HTTPDigestAuth

from near_swap.config import AutoDepositConfig, MoneroConfig, WalletCliConfig
from near_swap.data.audit import AuditContext, AuditManager

MONERO_ATOMIC_UNITS = Decimal(10) ** 12

CHAIN_ALIASES: Dict[str, str] = {
    "btc": "bitcoin",
    "bitcoin": "bitcoin",
    "zec": "zcash",
    "zcash": "zcash",
    "xmr": "monero",
    "monero": "monero",
}

# argv -> stdout; raises DepositError on non-zero exit.
CommandRunner = Callable[[Sequence[str]], str]


class DepositError(RuntimeError):
    pass


def normalize_chain(chain: str) -> Optional[str]:
    return CHAIN_ALIASES.get((chain or "").strip().lower())


def _parse_amount(amount: str) -> Decimal:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise DepositError(f"invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise DepositError(f"invalid amount: {amount!r}")
    return value


def run_command(argv: Sequence[str]) -> str:
    try:
        proc = subprocess.run(list(argv), capture_output=True, text=True, check=False)
    except OSError as e:
        raise DepositError(f"{argv[0]} not runnable: {e}") from e
    if proc.returncode != 0:
        output = (proc.stderr or proc.stdout or "").strip()
        raise DepositError(f"{argv[0]} failed (exit {proc.returncode}): {output}")
    return proc.stdout


class CliWalletDepositor:
    """bitcoin-cli / zcash-cli compatible wallet."""

    def __init__(self, config: WalletCliConfig, *, coin: str, runner: Optional[CommandRunner] = None):
        self.config = config
        self.coin = coin
        self.runner = runner or run_command

    def _base_args(self) -> List[str]:
        args = [self.config.cli_path, *self.config.cli_args]
        if self.config.wallet:
            args.append(f"-rpcwallet={self.config.wallet}")
        return args

    def _call(self, *args: str) -> str:
        return self.runner([*self._base_args(), *args]).strip()

    def validate(self) -> None:
        raw = self._call("getblockchaininfo")
        try:
            json.loads(raw)
        except ValueError as e:
            raise DepositError(f"invalid {self.config.cli_path} response: {e}") from e

    def get_balance(self) -> Decimal:
        raw = self._call("getbalance")
        try:
            return Decimal(raw)
        except InvalidOperation as e:
            raise DepositError(f"failed to parse balance {raw!r}") from e

    def send(self, address: str, amount: str) -> str:
        value = _parse_amount(amount)
        self.validate()
        balance = self.get_balance()
        if balance < value:
            raise DepositError(f"insufficient balance: have {balance:.8f} {self.coin}, need {value:.8f} {self.coin}")
        txid = self._call("sendtoaddress", address, str(amount).strip())
        if not txid:
            raise DepositError("empty transaction ID returned")
        return txid


class MoneroWalletDepositor:
    def __init__(self, config: MoneroConfig, *, session: Optional[requests.Session] = None, timeout_s: float = 30.0):
        self.config = config
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.url = f"http://{config.host}:{config.port}/json_rpc"

    def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": "0", "method": method}
        if params is not None:
            payload["params"] = params
        auth = None
        if self.config.username and self.config.password:
            auth = HTTPDigestAuth(self.config.username, self.config.password)
        try:
            res = self.session.post(self.url, json=payload, auth=auth, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise DepositError(f"monero-wallet-rpc {method} failed: {e}") from e
        if res.status_code != 200:
            raise DepositError(f"RPC returned status {res.status_code}: {res.text}")
        try:
            body = res.json()
        except ValueError as e:
            raise DepositError(f"failed to parse {method} response: {e}") from e
        err = body.get("error")
        if err:
            raise DepositError(f"RPC error (code {err.get('code')}): {err.get('message')}")
        return body.get("result") or {}

    def get_unlocked_balance(self) -> int:
        result = self._call("get_balance", {"account_index": self.config.account_index})
        return int(result.get("unlocked_balance") or 0)

    def send(self, address: str, amount: str) -> str:
        value = _parse_amount(amount)
        self._call("get_version")
        atomic = int((value * MONERO_ATOMIC_UNITS).to_integral_value(rounding=ROUND_DOWN))
        unlocked = self.get_unlocked_balance()
        if unlocked < atomic:
            have = Decimal(unlocked) / MONERO_ATOMIC_UNITS
            raise DepositError(f"insufficient balance: have {have:.12f} XMR, need {value:.12f} XMR")

        params: Dict[str, Any] = {
            "destinations": [{"amount": atomic, "address": address}],
            "account_index": self.config.account_index,
            "priority": self.config.priority,
            "get_tx_key": True,
        }
        if self.config.unlock_time > 0:
            params["unlock_time"] = self.config.unlock_time
        tx_hash = self._call("transfer", params).get("tx_hash")
        if not tx_hash:
            raise DepositError("empty transaction hash returned")
        return tx_hash


class DepositManager:
    """Chain router implementing the ``Depositor`` interface."""

    def __init__(
        self,
        config: AutoDepositConfig,
        *,
        runner: Optional[CommandRunner] = None,
        session: Optional[requests.Session] = None,
        audit: Optional[AuditManager] = None,
    ):
        self.config = config
        self.audit = audit or AuditManager("near_swap.execution.deposit")
        self._ctx = AuditContext(component="deposit")
        self._senders = {
            "bitcoin": CliWalletDepositor(config.bitcoin, coin="BTC", runner=runner),
            "zcash": CliWalletDepositor(config.zcash, coin="ZEC", runner=runner),
            "monero": MoneroWalletDepositor(config.monero, session=session),
        }
        self._enabled = {
            "bitcoin": config.bitcoin.enabled,
            "zcash": config.zcash.enabled,
            "monero": config.monero.enabled,
        }

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def is_enabled_for(self, chain: str) -> bool:
        if not self.config.enabled:
            return False
        key = normalize_chain(chain)
        return bool(key and self._enabled[key])

    def supported_chains(self) -> List[str]:
        return [name for name in ("bitcoin", "monero", "zcash") if self._enabled[name]]

    def send(self, chain: str, address: str, amount: str) -> str:
        if not self.config.enabled:
            raise DepositError("auto-deposit is not enabled in configuration")
        key = normalize_chain(chain)
        if key is None:
            raise DepositError(f"auto-deposit not supported for chain: {chain}")
        if not self._enabled[key]:
            raise DepositError(f"auto-deposit is not enabled for chain: {chain}")

        txid = self._senders[key].send(address, amount)
        self.audit.log(
            "deposit_sent",
            {"chain": key, "address": address, "amount": amount, "txid": txid},
            ctx=self._ctx,
        )
        return txid


__all__ = [
    "CHAIN_ALIASES",
    "CliWalletDepositor",
    "DepositError",
    "DepositManager",
    "MoneroWalletDepositor",
    "normalize_chain",
    "run_command",
]
