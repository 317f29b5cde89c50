"""Tests for the authorization entry point."""

from __future__ import annotations

import pytest

from conftest import (
    OTHER,
    PAYER,
    RECIPIENT,
    TOKEN,
    TX_HASH,
    FakeChain,
    native_tx,
    token_tx,
    transfer_from_calldata,
)
from istory_gate.config import SecretsConfig
from istory_gate.onchain import Confirmed, Pending, TransactionVerifier
from istory_gate.validator import (
    AuthMode,
    AuthRequest,
    AuthValidator,
    PaymentRequirement,
    VerdictDetail,
    extract_bearer,
)

REQUIREMENT = PaymentRequirement(network="base-sepolia", recipient=RECIPIENT, minimum_amount=150)
PAID_BY_PAYER = {"tx_hash": TX_HASH, "wallet": PAYER}


def _bearer(token: str) -> AuthRequest:
    return AuthRequest(headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
def validator(verifier: TransactionVerifier) -> AuthValidator:
    return AuthValidator({AuthMode.CRON: "abc123", AuthMode.ADMIN: "admin-secret"}, verifier)


def test_matching_secret_is_granted(validator: AuthValidator) -> None:
    verdict = validator.authorize(_bearer("abc123"), AuthMode.CRON)

    assert verdict.granted is True
    assert verdict.mode is AuthMode.CRON
    assert verdict.detail is VerdictDetail.GRANTED


def test_wrong_secret_is_denied(validator: AuthValidator) -> None:
    verdict = validator.authorize(_bearer("abc124"), AuthMode.CRON)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.INVALID


def test_secrets_are_not_shared_across_modes(validator: AuthValidator) -> None:
    assert validator.authorize(_bearer("abc123"), AuthMode.ADMIN).granted is False
    assert validator.authorize(_bearer("admin-secret"), AuthMode.CRON).granted is False
    assert validator.authorize(_bearer("admin-secret"), "admin").granted is True


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": ""}, {"Authorization": "abc123"}, {"Authorization": "Basic abc123"}],
)
def test_missing_or_malformed_bearer_is_denied(validator: AuthValidator, headers: dict) -> None:
    verdict = validator.authorize(AuthRequest(headers=headers), AuthMode.CRON)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.INVALID


def test_bearer_header_lookup_is_case_insensitive() -> None:
    assert extract_bearer(AuthRequest(headers={"authorization": "bearer tok"})) == "tok"


def test_unset_secret_is_misconfigured(verifier: TransactionVerifier) -> None:
    validator = AuthValidator({AuthMode.CRON: None}, verifier)

    verdict = validator.authorize(_bearer(""), AuthMode.CRON)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.MISCONFIGURED


def test_unknown_mode_is_misconfigured(validator: AuthValidator) -> None:
    verdict = validator.authorize(_bearer("abc123"), "superuser")

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.MISCONFIGURED


def test_from_config_reads_secret_values() -> None:
    validator = AuthValidator.from_config(SecretsConfig(cron_secret="c-secret", admin_secret="a-secret"))

    assert validator.authorize(_bearer("c-secret"), AuthMode.CRON).granted is True
    assert validator.authorize(_bearer("a-secret"), AuthMode.ADMIN).granted is True


def test_confirmed_payment_is_granted(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(value=200), block=100)
    chain.set_latest(110)

    verdict = validator.authorize(
        AuthRequest(params={"txHash": TX_HASH.upper().replace("0X", "0x"), "userWallet": PAYER}),
        AuthMode.PAYMENT,
        REQUIREMENT,
    )

    assert verdict.granted is True
    assert verdict.transaction_hash == TX_HASH
    assert verdict.result == Confirmed(TX_HASH, 200, 10)
    assert verdict.payer == PAYER.lower()


def test_pending_payment_is_denied_and_retryable(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(), block=100)
    chain.set_latest(102)

    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.PENDING
    assert verdict.retryable is True
    assert verdict.result == Pending(TX_HASH, 2, 3)


def test_insufficient_payment_is_invalid(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(value=100), block=100)
    chain.set_latest(110)

    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.INVALID
    assert verdict.reason == "insufficient amount"
    assert verdict.retryable is False


def test_unknown_transaction_is_not_found(validator: AuthValidator) -> None:
    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.NOT_FOUND


def test_failing_chain_client_never_grants(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(value=10**18), block=100)
    for w3 in chain.endpoints.values():
        w3.eth.failing = True

    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.UNAVAILABLE
    assert verdict.retryable is True


def test_unexpected_verifier_error_fails_closed(validator: AuthValidator, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(claim):
        raise RuntimeError("boom")

    monkeypatch.setattr(validator.verifier, "verify", _boom)

    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.ERROR


def test_payment_without_requirement_is_misconfigured(validator: AuthValidator) -> None:
    verdict = validator.authorize(AuthRequest(params={"tx_hash": TX_HASH}), AuthMode.PAYMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.MISCONFIGURED


def test_payment_without_verifier_is_misconfigured() -> None:
    validator = AuthValidator({})

    verdict = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.detail is VerdictDetail.MISCONFIGURED


@pytest.mark.parametrize(
    "params, reason",
    [
        ({"wallet": PAYER}, "missing transaction hash"),
        ({"tx_hash": 12, "wallet": PAYER}, "missing transaction hash"),
        ({"tx_hash": "0x123", "wallet": PAYER}, "invalid transaction hash"),
        ({"tx_hash": TX_HASH, "wallet": PAYER, "network": "sepolia"}, "network mismatch"),
        ({"tx_hash": TX_HASH}, "missing wallet address"),
        ({"tx_hash": TX_HASH, "wallet": "not-a-wallet"}, "invalid wallet address"),
    ],
)
def test_malformed_payment_request(validator: AuthValidator, params: dict, reason: str) -> None:
    verdict = validator.authorize(AuthRequest(params=params), AuthMode.PAYMENT, REQUIREMENT)

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.MALFORMED
    assert verdict.reason == reason


def test_payer_mismatch_is_invalid(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(), block=100)
    chain.set_latest(110)

    verdict = validator.authorize(
        AuthRequest(params={"tx_hash": TX_HASH, "wallet": RECIPIENT}), AuthMode.PAYMENT, REQUIREMENT
    )

    assert verdict.granted is False
    assert verdict.reason == "sender mismatch"


def test_observer_cannot_claim_someone_elses_payment(validator: AuthValidator, chain: FakeChain) -> None:
    chain.add(native_tx(sender=PAYER), block=100)
    chain.set_latest(110)

    verdict = validator.authorize(
        AuthRequest(params={"tx_hash": TX_HASH, "wallet": OTHER}), AuthMode.PAYMENT, REQUIREMENT
    )

    assert verdict.granted is False
    assert verdict.detail is VerdictDetail.INVALID
    assert verdict.payer is None


def test_transfer_from_is_attributed_to_token_owner(validator: AuthValidator, chain: FakeChain) -> None:
    requirement = PaymentRequirement(
        network="base-sepolia", recipient=RECIPIENT, minimum_amount=150, token=TOKEN
    )
    # OTHER is the approved spender that submitted the transaction
    tx = token_tx(sender=OTHER)
    tx["input"] = transfer_from_calldata(PAYER, RECIPIENT, 500)
    chain.add(tx, block=100)
    chain.set_latest(110)

    spender = validator.authorize(
        AuthRequest(params={"tx_hash": TX_HASH, "wallet": OTHER}), AuthMode.PAYMENT, requirement
    )
    owner = validator.authorize(AuthRequest(params=PAID_BY_PAYER), AuthMode.PAYMENT, requirement)

    assert spender.reason == "sender mismatch"
    assert owner.granted is True
    assert owner.payer == PAYER.lower()
