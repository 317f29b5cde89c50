"""Payment transaction verification for paywalled routes.

Checks that a claimed transaction pays the expected recipient at least the
minimum amount, in the expected asset, with enough confirmations. The verifier
never mutates anything: one-grant-per-transaction is enforced by the caller's
claim store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Union

from web3 import Web3

from ..errors import ConfigurationError, InvalidInput, TransientError
from .client import ChainClient, TransactionRecord
from .networks import NetworkConfig, RegistryView

logger = logging.getLogger(__name__)

REASON_UNSUPPORTED_NETWORK = "unsupported network"
REASON_INVALID_HASH = "invalid transaction hash"
REASON_FAILED = "transaction failed on-chain"
REASON_CHAIN_MISMATCH = "chain id mismatch"
REASON_RECIPIENT = "recipient mismatch"
REASON_SENDER = "sender mismatch"
REASON_TOKEN = "token or amount mismatch"
REASON_INSUFFICIENT = "insufficient amount"
REASON_UNAVAILABLE = "rpc unavailable"


@dataclass(frozen=True)
class PaymentClaim:
    """A caller-supplied claim that a transaction paid for access."""

    transaction_hash: str
    claimed_network: str
    expected_recipient: str
    minimum_amount: int
    # None means the chain's native asset
    expected_token: str | None = None
    # Wallet the payment must come from, if the caller knows it
    expected_sender: str | None = None


@dataclass(frozen=True)
class Confirmed:
    transaction_hash: str
    amount: int
    confirmations: int


@dataclass(frozen=True)
class Pending:
    transaction_hash: str
    confirmations: int
    required: int


@dataclass(frozen=True)
class Rejected:
    transaction_hash: str
    reason: str


@dataclass(frozen=True)
class NotFound:
    transaction_hash: str


@dataclass(frozen=True)
class Unavailable:
    """Every RPC endpoint failed. Retry later."""

    transaction_hash: str
    reason: str = REASON_UNAVAILABLE


VerificationResult = Union[Confirmed, Pending, Rejected, NotFound, Unavailable]


def same_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive EVM address equality. Invalid addresses never match."""
    if not a or not b:
        return False
    if not (Web3.is_address(a) and Web3.is_address(b)):
        return False
    return a.lower() == b.lower()


class TransactionVerifier:
    """Verifies PaymentClaims against on-chain data."""

    def __init__(
        self,
        client: ChainClient,
        networks: RegistryView,
        timeout: float = 15.0,
    ):
        """Initialize verifier.

        Args:
            client: Read-only chain client.
            networks: Server (verify-only) registry view.
            timeout: Overall seconds allowed for one verification, all
                fallback endpoints included.
        """
        self.client = client
        self.networks = networks
        self.timeout = timeout

    def verify(self, claim: PaymentClaim) -> VerificationResult:
        """Verify a payment claim.

        Verification steps:
        1. Network is configured
        2. Transaction exists
        3. Transaction succeeded
        4. Recipient (and sender, if expected) match
        5. Asset and amount match
        6. Enough confirmations

        Never raises; every failure is a typed result.
        """
        tx_hash = claim.transaction_hash

        network = self.networks.resolve(claim.claimed_network)
        if network is None:
            logger.info(f"Rejecting {tx_hash}: network {claim.claimed_network!r} not configured")
            return Rejected(tx_hash, REASON_UNSUPPORTED_NETWORK)

        deadline = time.monotonic() + self.timeout

        try:
            record = self.client.get_transaction(tx_hash, network, deadline=deadline)
        except InvalidInput:
            return Rejected(tx_hash, REASON_INVALID_HASH)
        except ConfigurationError as e:
            logger.error(f"Network {network.logical_name} misconfigured: {e}")
            return Rejected(tx_hash, REASON_UNSUPPORTED_NETWORK)
        except TransientError as e:
            logger.warning(f"Could not fetch {tx_hash} on {network.logical_name}: {e}")
            return Unavailable(tx_hash)

        if record is None:
            return NotFound(tx_hash)

        rejection = self._check_record(claim, network, record)
        if rejection is not None:
            logger.info(f"Rejecting {tx_hash}: {rejection}")
            return Rejected(tx_hash, rejection)

        if not record.mined:
            return Pending(tx_hash, 0, network.required_confirmations)

        try:
            confirmations = self.client.get_confirmations(
                record.block_number, network, deadline=deadline
            )
        except TransientError as e:
            logger.warning(f"Could not read block height on {network.logical_name}: {e}")
            return Unavailable(tx_hash)
        except ConfigurationError as e:
            logger.error(f"Network {network.logical_name} misconfigured: {e}")
            return Rejected(tx_hash, REASON_UNSUPPORTED_NETWORK)

        if confirmations < network.required_confirmations:
            return Pending(tx_hash, confirmations, network.required_confirmations)

        return Confirmed(tx_hash, record.value, confirmations)

    def _check_record(
        self,
        claim: PaymentClaim,
        network: NetworkConfig,
        record: TransactionRecord,
    ) -> str | None:
        """Return a rejection reason, or None if the record satisfies the claim."""
        if record.succeeded is False:
            return REASON_FAILED

        if record.chain_id is not None and record.chain_id != network.chain_id:
            return REASON_CHAIN_MISMATCH

        if not same_address(record.recipient, claim.expected_recipient):
            return REASON_RECIPIENT

        if claim.expected_sender and not same_address(record.sender, claim.expected_sender):
            return REASON_SENDER

        if claim.expected_token is None:
            if not record.is_plain_transfer or record.token is not None:
                return REASON_TOKEN
        elif not same_address(record.token, claim.expected_token):
            return REASON_TOKEN

        if record.value < claim.minimum_amount:
            return REASON_INSUFFICIENT

        return None
