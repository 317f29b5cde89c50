"""Single authorization entry point for protected routes.

Every protected route calls AuthValidator.authorize with the mode it needs and
gets back an AuthVerdict. The validator fails closed: anything unexpected is a
denial, never a grant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from web3 import Web3

from . import secret_gate
from .errors import ConfigurationError
from .onchain.verifier import (
    REASON_INVALID_HASH,
    Confirmed,
    NotFound,
    PaymentClaim,
    Pending,
    Rejected,
    TransactionVerifier,
    Unavailable,
    VerificationResult,
)

if TYPE_CHECKING:
    from .config import PaywallConfig, SecretsConfig

logger = logging.getLogger(__name__)


class AuthMode(str, Enum):
    """Authorization a route requires."""

    CRON = "cron"
    ADMIN = "admin"
    PAYMENT = "payment"

    @property
    def is_secret(self) -> bool:
        return self in (AuthMode.CRON, AuthMode.ADMIN)


class VerdictDetail(str, Enum):
    GRANTED = "granted"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    MISCONFIGURED = "misconfigured"
    ERROR = "error"


RETRYABLE = frozenset({VerdictDetail.PENDING, VerdictDetail.NOT_FOUND, VerdictDetail.UNAVAILABLE})


@dataclass(frozen=True)
class AuthVerdict:
    """Outcome of one authorization check."""

    granted: bool
    mode: AuthMode | None
    detail: VerdictDetail
    reason: str = ""
    transaction_hash: str | None = None
    result: VerificationResult | None = None
    # Verified paying wallet, set on granted payment verdicts
    payer: str | None = None

    @property
    def retryable(self) -> bool:
        return self.detail in RETRYABLE


@dataclass(frozen=True)
class AuthRequest:
    """The parts of an inbound request the validator looks at."""

    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass(frozen=True)
class PaymentRequirement:
    """Server-side price of a paywalled action."""

    network: str
    recipient: str
    minimum_amount: int
    token: str | None = None

    @classmethod
    def from_config(cls, paywall: "PaywallConfig") -> "PaymentRequirement | None":
        """Build from config; None when no recipient is configured."""
        if not paywall.recipient:
            return None
        return cls(
            network=paywall.network,
            recipient=paywall.recipient,
            minimum_amount=paywall.minimum_amount,
            token=paywall.token,
        )


def extract_bearer(request: AuthRequest) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header."""
    authorization = request.header("authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _first(params: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = params.get(name)
        if value not in (None, ""):
            return value
    return None


class AuthValidator:
    """Orchestrates SecretGate and TransactionVerifier per route mode."""

    def __init__(
        self,
        secrets: Mapping[AuthMode, str | bytes | None],
        verifier: TransactionVerifier | None = None,
    ):
        """Initialize validator.

        Args:
            secrets: Shared secret per secret mode (CRON, ADMIN).
            verifier: Payment verifier; payment mode is misconfigured without it.
        """
        self._secrets = dict(secrets)
        self.verifier = verifier

    @classmethod
    def from_config(
        cls, secrets: "SecretsConfig", verifier: TransactionVerifier | None = None
    ) -> "AuthValidator":
        return cls(
            {
                AuthMode.CRON: secrets.cron_secret.get_secret_value() if secrets.cron_secret else None,
                AuthMode.ADMIN: secrets.admin_secret.get_secret_value() if secrets.admin_secret else None,
            },
            verifier,
        )

    def authorize(
        self,
        request: AuthRequest,
        required_mode: AuthMode | str,
        requirement: PaymentRequirement | None = None,
    ) -> AuthVerdict:
        """Decide whether a request may run the guarded action.

        Args:
            request: Headers and parameters of the inbound request.
            required_mode: Mode the route requires.
            requirement: Payment the route requires (PAYMENT mode only).

        Returns:
            AuthVerdict. Never raises.
        """
        try:
            mode = AuthMode(required_mode)
        except ValueError:
            logger.error(f"Unknown authorization mode: {required_mode!r}")
            return AuthVerdict(False, None, VerdictDetail.MISCONFIGURED, "unknown authorization mode")

        try:
            if mode.is_secret:
                return self._authorize_secret(request, mode)
            return self._authorize_payment(request, requirement)
        except ConfigurationError as e:
            logger.error(f"Authorization for {mode.value} route misconfigured: {e}")
            return AuthVerdict(False, mode, VerdictDetail.MISCONFIGURED, "server configuration error")
        except Exception:
            logger.exception(f"Unexpected error authorizing {mode.value} route")
            return AuthVerdict(False, mode, VerdictDetail.ERROR, "internal error")

    def _authorize_secret(self, request: AuthRequest, mode: AuthMode) -> AuthVerdict:
        configured = self._secrets.get(mode)
        if not configured:
            raise ConfigurationError(f"No secret configured for {mode.value} routes")

        token = extract_bearer(request)
        if token is None:
            return AuthVerdict(False, mode, VerdictDetail.INVALID, "missing bearer token")

        if secret_gate.compare(token, configured):
            return AuthVerdict(True, mode, VerdictDetail.GRANTED)
        return AuthVerdict(False, mode, VerdictDetail.INVALID, "invalid secret")

    def _authorize_payment(
        self, request: AuthRequest, requirement: PaymentRequirement | None
    ) -> AuthVerdict:
        mode = AuthMode.PAYMENT
        if requirement is None:
            raise ConfigurationError("No payment requirement configured for this route")
        if self.verifier is None:
            raise ConfigurationError("No transaction verifier configured")

        params = request.params
        tx_hash = _first(params, "tx_hash", "txHash", "transaction_hash")
        if not isinstance(tx_hash, str):
            return AuthVerdict(False, mode, VerdictDetail.MALFORMED, "missing transaction hash")
        tx_hash = tx_hash.strip().lower()

        network = _first(params, "network")
        if network is not None and network != requirement.network:
            return AuthVerdict(
                False, mode, VerdictDetail.MALFORMED, "network mismatch", transaction_hash=tx_hash
            )

        wallet = _first(params, "wallet", "userWallet", "wallet_address")
        if wallet is None:
            return AuthVerdict(
                False, mode, VerdictDetail.MALFORMED, "missing wallet address", transaction_hash=tx_hash
            )
        if not (isinstance(wallet, str) and Web3.is_address(wallet)):
            return AuthVerdict(
                False, mode, VerdictDetail.MALFORMED, "invalid wallet address", transaction_hash=tx_hash
            )
        wallet = wallet.lower()

        claim = PaymentClaim(
            transaction_hash=tx_hash,
            claimed_network=requirement.network,
            expected_recipient=requirement.recipient,
            minimum_amount=requirement.minimum_amount,
            expected_token=requirement.token,
            expected_sender=wallet,
        )
        result = self.verifier.verify(claim)
        verdict = self._payment_verdict(tx_hash, result)
        if verdict.granted:
            return replace(verdict, payer=wallet)
        return verdict

    @staticmethod
    def _payment_verdict(tx_hash: str, result: VerificationResult) -> AuthVerdict:
        mode = AuthMode.PAYMENT

        if isinstance(result, Confirmed):
            return AuthVerdict(True, mode, VerdictDetail.GRANTED, "", tx_hash, result)
        if isinstance(result, Pending):
            reason = f"{result.confirmations} of {result.required} confirmations"
            return AuthVerdict(False, mode, VerdictDetail.PENDING, reason, tx_hash, result)
        if isinstance(result, NotFound):
            return AuthVerdict(
                False, mode, VerdictDetail.NOT_FOUND, "transaction not found", tx_hash, result
            )
        if isinstance(result, Unavailable):
            return AuthVerdict(False, mode, VerdictDetail.UNAVAILABLE, result.reason, tx_hash, result)
        if isinstance(result, Rejected) and result.reason == REASON_INVALID_HASH:
            return AuthVerdict(False, mode, VerdictDetail.MALFORMED, result.reason, tx_hash, result)
        if isinstance(result, Rejected):
            return AuthVerdict(False, mode, VerdictDetail.INVALID, result.reason, tx_hash, result)

        logger.error(f"Unexpected verification result: {result!r}")
        return AuthVerdict(False, mode, VerdictDetail.ERROR, "internal error", tx_hash, result)
