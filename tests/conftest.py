"""Shared fakes for chain access. No test talks to a real RPC endpoint."""

from __future__ import annotations

from typing import Any

import pytest
from web3.exceptions import TransactionNotFound

from istory_gate.onchain import ChainClient, ChainConfigRegistry, NetworkConfig, TransactionVerifier

RECIPIENT = "0x" + "ab" * 20
PAYER = "0x" + "22" * 20
OTHER = "0x" + "33" * 20
TOKEN = "0x" + "44" * 20

TX_HASH = "0x" + "ab" * 32
BASE_SEPOLIA = 84532

PRIMARY_RPC = "https://primary.example/v2/secret-api-key"
FALLBACK_RPC = "https://fallback.example"


def transfer_calldata(to: str, amount: int) -> str:
    return "0xa9059cbb" + to[2:].lower().rjust(64, "0") + format(amount, "064x")


def transfer_from_calldata(sender: str, to: str, amount: int) -> str:
    return (
        "0x23b872dd"
        + sender[2:].lower().rjust(64, "0")
        + to[2:].lower().rjust(64, "0")
        + format(amount, "064x")
    )


def native_tx(
    tx_hash: str = TX_HASH,
    to: str = RECIPIENT,
    value: int = 200,
    sender: str = PAYER,
    chain_id: int = BASE_SEPOLIA,
) -> dict[str, Any]:
    return {"hash": tx_hash, "from": sender, "to": to, "value": value, "input": "0x", "chainId": chain_id}


def token_tx(
    tx_hash: str = TX_HASH,
    token: str = TOKEN,
    to: str = RECIPIENT,
    amount: int = 200,
    sender: str = PAYER,
) -> dict[str, Any]:
    return {
        "hash": tx_hash,
        "from": sender,
        "to": token,
        "value": 0,
        "input": transfer_calldata(to, amount),
        "chainId": BASE_SEPOLIA,
    }


class FakeEth:
    """Stands in for web3's eth module."""

    def __init__(self) -> None:
        self.transactions: dict[str, dict[str, Any]] = {}
        self.receipts: dict[str, dict[str, Any]] = {}
        self.latest = 0
        self.failing = False
        self.calls = 0

    def _touch(self) -> None:
        self.calls += 1
        if self.failing:
            raise ConnectionError("connection refused")

    def get_transaction(self, tx_hash: str) -> dict[str, Any]:
        self._touch()
        if tx_hash not in self.transactions:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.transactions[tx_hash]

    def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any]:
        self._touch()
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Receipt for {tx_hash} not found")
        return self.receipts[tx_hash]

    @property
    def block_number(self) -> int:
        self._touch()
        return self.latest


class FakeWeb3:
    def __init__(self) -> None:
        self.eth = FakeEth()

    def add(self, tx: dict[str, Any], block: int | None = 100, status: int = 1) -> None:
        self.eth.transactions[tx["hash"]] = tx
        if block is not None:
            self.eth.receipts[tx["hash"]] = {"blockNumber": block, "status": status}


class FakeChain:
    """A set of fake endpoints sharing one view of the chain."""

    def __init__(self, urls: tuple[str, ...]) -> None:
        self.endpoints = {url: FakeWeb3() for url in urls}

    def add(self, tx: dict[str, Any], block: int | None = 100, status: int = 1) -> None:
        for w3 in self.endpoints.values():
            w3.add(tx, block, status)

    def set_latest(self, block: int) -> None:
        for w3 in self.endpoints.values():
            w3.eth.latest = block

    def factory(self, url: str, timeout: float) -> FakeWeb3:
        return self.endpoints[url]


@pytest.fixture
def registry() -> ChainConfigRegistry:
    return ChainConfigRegistry(
        [
            NetworkConfig(
                logical_name="base-sepolia",
                chain_id=BASE_SEPOLIA,
                rpc_urls=(PRIMARY_RPC, FALLBACK_RPC),
                required_confirmations=3,
            ),
            NetworkConfig(
                logical_name="sepolia",
                chain_id=11155111,
                rpc_urls=("https://rpc.sepolia.example",),
                required_confirmations=0,
            ),
        ],
        wallet_connect_project_id="test-project",
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain((PRIMARY_RPC, FALLBACK_RPC, "https://rpc.sepolia.example"))


@pytest.fixture
def client(registry: ChainConfigRegistry, chain: FakeChain) -> ChainClient:
    return ChainClient(registry.for_server(), timeout=1.0, web3_factory=chain.factory)


@pytest.fixture
def verifier(registry: ChainConfigRegistry, client: ChainClient) -> TransactionVerifier:
    return TransactionVerifier(client, registry.for_server(), timeout=5.0)
