"""CLI tool for istory-gate administration."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .claims import ClaimStore
from .config import Config, load_config, DEFAULT_CONFIG_PATH
from .onchain import (
    ChainClient,
    ChainConfigRegistry,
    Confirmed,
    NotFound,
    PaymentClaim,
    Pending,
    Rejected,
    TransactionVerifier,
    Unavailable,
)


def cmd_networks(registry: ChainConfigRegistry, args: argparse.Namespace) -> int:
    """List configured networks."""
    if not len(registry):
        print("No networks configured")
        return 0

    print(f"{'Name':<16} {'Chain ID':<10} {'Confs':<6} {'RPC endpoints'}")
    print("-" * 70)

    for n in registry:
        print(f"{n.logical_name:<16} {n.chain_id:<10} {n.required_confirmations:<6} {', '.join(n.rpc_urls)}")

    return 0


def cmd_client_config(registry: ChainConfigRegistry, args: argparse.Namespace) -> int:
    """Print the browser network manifest."""
    print(json.dumps(registry.client_manifest(), indent=2))
    return 0


def cmd_verify(config: Config, registry: ChainConfigRegistry, args: argparse.Namespace) -> int:
    """Verify a payment transaction without claiming it."""
    networks = registry.for_server()
    client = ChainClient(networks, timeout=config.rpc.timeout_seconds)
    verifier = TransactionVerifier(client, networks, timeout=config.rpc.verification_timeout_seconds)

    claim = PaymentClaim(
        transaction_hash=args.tx_hash,
        claimed_network=args.network,
        expected_recipient=args.recipient,
        minimum_amount=args.min_amount,
        expected_token=args.token,
        expected_sender=args.payer,
    )
    result = verifier.verify(claim)

    if isinstance(result, Confirmed):
        print(f"CONFIRMED: {result.amount} with {result.confirmations} confirmation(s)")
        return 0
    if isinstance(result, Pending):
        print(f"PENDING: {result.confirmations} of {result.required} confirmation(s)")
        return 2
    if isinstance(result, NotFound):
        print("NOT FOUND: transaction not indexed (yet)")
        return 2
    if isinstance(result, Unavailable):
        print(f"UNAVAILABLE: {result.reason}", file=sys.stderr)
        return 3
    if isinstance(result, Rejected):
        print(f"REJECTED: {result.reason}")
        return 1
    return 1


def cmd_claims_list(store: ClaimStore, args: argparse.Namespace) -> int:
    """List consumed payments."""
    claims = store.list_claims(payer=args.payer)

    if not claims:
        print("No claims found")
        return 0

    print(f"{'Tx hash':<20} {'Network':<14} {'Payer':<20} {'Amount':<24} {'Claimed'}")
    print("-" * 100)

    for c in claims:
        tx_short = c.tx_hash[:16] + "..."
        payer = (c.payer[:16] + "...") if c.payer else "(unknown)"
        amount = str(c.amount) if c.amount is not None else "-"
        claimed = c.claimed_at.strftime("%Y-%m-%d %H:%M")
        print(f"{tx_short:<20} {c.network:<14} {payer:<20} {amount:<24} {claimed}")

    return 0


def main() -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="iStory Gate Administration",
        prog="istory-gate-ctl",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file path (default: {DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("networks", help="List configured networks")
    subparsers.add_parser("client-config", help="Print the browser network manifest")

    verify = subparsers.add_parser("verify", help="Verify a payment transaction")
    verify.add_argument("network", help="Logical network name")
    verify.add_argument("tx_hash", help="Transaction hash")
    verify.add_argument("--recipient", "-r", required=True, help="Expected recipient address")
    verify.add_argument("--min-amount", "-m", type=int, required=True, help="Minimum amount (smallest unit)")
    verify.add_argument("--token", "-t", help="ERC20 contract address (default: native asset)")
    verify.add_argument("--payer", "-p", help="Expected sender address")

    claims_parser = subparsers.add_parser("claims", help="Consumed payment claims")
    claims_sub = claims_parser.add_subparsers(dest="claims_command")
    claims_list = claims_sub.add_parser("list", help="List claims")
    claims_list.add_argument("--payer", help="Only claims paid by this wallet")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
        registry = ChainConfigRegistry.from_config(config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Dispatch commands
    if args.command == "networks":
        return cmd_networks(registry, args)

    elif args.command == "client-config":
        return cmd_client_config(registry, args)

    elif args.command == "verify":
        return cmd_verify(config, registry, args)

    elif args.command == "claims":
        if args.claims_command == "list":
            store = ClaimStore(config.database.path)
            try:
                return cmd_claims_list(store, args)
            finally:
                store.close()
        else:
            claims_parser.print_help()
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
