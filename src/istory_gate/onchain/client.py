"""Read-only JSON-RPC client for fetching payment transactions.

Each configured network gets one Web3 instance per RPC endpoint, built once at
startup. Calls walk the endpoints in configured order and only give up when
every one of them has failed.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar
from urllib.parse import urlparse

from web3 import Web3
from web3.exceptions import TransactionNotFound

from ..errors import ConfigurationError, InvalidInput, TransientError
from .networks import NetworkConfig, RegistryView

logger = logging.getLogger(__name__)

T = TypeVar("T")

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Minimal ERC20 ABI for decoding payment calldata
ERC20_TRANSFER_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "from", "type": "address"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Decoding needs no provider
_erc20 = Web3().eth.contract(abi=ERC20_TRANSFER_ABI)


@dataclass(frozen=True)
class TransactionRecord:
    """A transaction and its receipt, normalized for payment checks.

    For ERC20 transfer calls, recipient/value are the decoded destination and
    amount and token is the contract address. For everything else token is
    None and recipient/value come straight from the transaction.
    """

    transaction_hash: str
    sender: str
    recipient: str | None
    value: int
    token: str | None
    to: str | None
    block_number: int | None
    succeeded: bool | None
    is_plain_transfer: bool
    chain_id: int | None = None

    @property
    def mined(self) -> bool:
        return self.block_number is not None


def is_valid_tx_hash(tx_hash: object) -> bool:
    return isinstance(tx_hash, str) and bool(TX_HASH_PATTERN.match(tx_hash))


def _redact(url: str) -> str:
    """Strip paths and query strings, which often carry provider API keys."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.hostname}"


def _as_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if not data:
        return b""
    return Web3.to_bytes(hexstr=data)


def decode_token_transfer(data: bytes) -> tuple[str | None, str, int] | None:
    """Decode ERC20 transfer/transferFrom calldata.

    Returns:
        (payer or None for transfer, destination, amount), or None if the
        calldata is not a token transfer.
    """
    if len(data) < 4:
        return None
    try:
        func, params = _erc20.decode_function_input(data)
    except Exception:
        return None

    if func.fn_name == "transfer":
        return None, params["to"], int(params["value"])
    if func.fn_name == "transferFrom":
        return params["from"], params["to"], int(params["value"])
    return None


def normalize_transaction(tx: Any, receipt: Any | None) -> TransactionRecord:
    """Build a TransactionRecord from JSON-RPC transaction and receipt data."""
    raw_hash = tx["hash"]
    tx_hash = raw_hash if isinstance(raw_hash, str) else Web3.to_hex(raw_hash)
    if not tx_hash.startswith("0x"):
        tx_hash = "0x" + tx_hash

    sender = Web3.to_checksum_address(tx["from"])
    to = Web3.to_checksum_address(tx["to"]) if tx.get("to") else None
    data = _as_bytes(tx.get("input"))

    recipient = to
    value = int(tx.get("value", 0))
    token = None

    decoded = decode_token_transfer(data) if to else None
    if decoded is not None:
        payer, destination, amount = decoded
        token = to
        recipient = Web3.to_checksum_address(destination)
        value = amount
        if payer is not None:
            sender = Web3.to_checksum_address(payer)

    if receipt is not None:
        block_number = int(receipt["blockNumber"])
        succeeded = receipt["status"] == 1
    else:
        block_number = None
        succeeded = None

    chain_id = tx.get("chainId")

    return TransactionRecord(
        transaction_hash=tx_hash.lower(),
        sender=sender,
        recipient=recipient,
        value=value,
        token=token,
        to=to,
        block_number=block_number,
        succeeded=succeeded,
        is_plain_transfer=len(data) == 0,
        chain_id=int(chain_id) if chain_id is not None else None,
    )


def http_web3(url: str, timeout: float) -> Web3:
    """Web3 over HTTP with a bounded per-request timeout and no internal retries."""
    return Web3(
        Web3.HTTPProvider(
            url,
            request_kwargs={"timeout": timeout},
            exception_retry_configuration=None,
        )
    )


class ChainClient:
    """Fetches transactions and block heights with ordered endpoint fallback."""

    def __init__(
        self,
        networks: RegistryView,
        timeout: float = 5.0,
        web3_factory: Callable[[str, float], Web3] | None = None,
    ):
        """Initialize the client.

        Args:
            networks: Server (verify-only) view of the chain registry.
            timeout: Per-attempt RPC timeout in seconds.
            web3_factory: Builds a Web3 for an endpoint URL. Defaults to HTTP.
        """
        self.networks = networks
        self.timeout = timeout
        factory = web3_factory or http_web3

        self._endpoints: dict[str, tuple[tuple[str, Web3], ...]] = {
            network.logical_name: tuple((url, factory(url, timeout)) for url in network.rpc_urls)
            for network in networks
        }

    def _network(self, network: str | NetworkConfig) -> str:
        name = network.logical_name if isinstance(network, NetworkConfig) else network
        if name not in self._endpoints:
            raise ConfigurationError(f"Network not configured: {name}")
        return name

    def _call(
        self,
        network: str | NetworkConfig,
        fn: Callable[[Web3], T],
        deadline: float | None = None,
    ) -> T:
        """Run fn against each endpoint in order until one answers.

        TransactionNotFound is an answer and propagates immediately.
        """
        name = self._network(network)
        last_error: Exception | None = None

        for url, w3 in self._endpoints[name]:
            if deadline is not None and time.monotonic() >= deadline:
                logger.error(f"Verification deadline exceeded on {name} before trying {_redact(url)}")
                raise TransientError(f"Deadline exceeded querying {name}")
            try:
                return fn(w3)
            except TransactionNotFound:
                raise
            except Exception as e:
                logger.warning(f"RPC call to {_redact(url)} ({name}) failed: {e}")
                last_error = e

        logger.error(f"All RPC endpoints for {name} failed")
        raise TransientError(f"All RPC endpoints for {name} failed") from last_error

    def get_transaction(
        self,
        tx_hash: str,
        network: str | NetworkConfig,
        deadline: float | None = None,
    ) -> TransactionRecord | None:
        """Fetch a transaction and its receipt.

        Returns:
            The normalized record, or None if no endpoint knows the hash.
            A known but unmined transaction has block_number=None.

        Raises:
            InvalidInput: Malformed hash.
            ConfigurationError: Unknown network.
            TransientError: Every endpoint failed or the deadline passed.
        """
        if not is_valid_tx_hash(tx_hash):
            raise InvalidInput("Transaction hash must be 0x followed by 64 hex digits")
        name = self._network(network)

        try:
            tx = self._call(name, lambda w3: w3.eth.get_transaction(tx_hash), deadline)
        except TransactionNotFound:
            logger.info(f"Transaction {tx_hash} not found on {name}")
            return None

        try:
            receipt = self._call(
                name, lambda w3: w3.eth.get_transaction_receipt(tx_hash), deadline
            )
        except TransactionNotFound:
            receipt = None

        return normalize_transaction(tx, receipt)

    def latest_block(self, network: str | NetworkConfig, deadline: float | None = None) -> int:
        return int(self._call(network, lambda w3: w3.eth.block_number, deadline))

    def get_confirmations(
        self,
        block_number: int,
        network: str | NetworkConfig,
        deadline: float | None = None,
    ) -> int:
        """Blocks mined after block_number, clamped to >= 0."""
        return max(0, self.latest_block(network, deadline) - block_number)
