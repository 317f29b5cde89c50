"""On-chain payment verification.

This module provides read-only blockchain access for the paywall: the network
registry, a JSON-RPC client with endpoint fallback, and the payment verifier.
"""

from .client import ChainClient, TransactionRecord
from .networks import Capability, ChainConfigRegistry, NetworkConfig, RegistryView
from .verifier import (
    Confirmed,
    NotFound,
    PaymentClaim,
    Pending,
    Rejected,
    TransactionVerifier,
    Unavailable,
    VerificationResult,
)

__all__ = [
    "Capability",
    "ChainClient",
    "ChainConfigRegistry",
    "Confirmed",
    "NetworkConfig",
    "NotFound",
    "PaymentClaim",
    "Pending",
    "RegistryView",
    "Rejected",
    "TransactionRecord",
    "TransactionVerifier",
    "Unavailable",
    "VerificationResult",
]
