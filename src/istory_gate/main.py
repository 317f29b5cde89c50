"""Main entry point for istory-gate."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from .config import load_config, DEFAULT_CONFIG_PATH
from .api import app, init_deps
from .errors import ConfigurationError
from .onchain import ChainConfigRegistry

logger = logging.getLogger(__name__)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="iStory authorization gate")
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file path (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate configuration and exit",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Override API listen host",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Override API listen port",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load configuration
    try:
        config = load_config(args.config)
        registry = ChainConfigRegistry.from_config(config)
    except (ConfigurationError, ValueError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    if args.check_config:
        print("Configuration is valid")
        print(f"  Cron secret:  {'set' if config.secrets.cron_secret else 'NOT SET'}")
        print(f"  Admin secret: {'set' if config.secrets.admin_secret else 'NOT SET'}")
        for network in registry:
            print(
                f"  Network {network.logical_name}: chain {network.chain_id}, "
                f"{len(network.rpc_urls)} RPC endpoint(s), "
                f"{network.required_confirmations} confirmation(s)"
            )
        if config.paywall.recipient:
            token = config.paywall.token or "native"
            print(
                f"  Paywall: {config.paywall.minimum_amount} ({token}) "
                f"to {config.paywall.recipient} on {config.paywall.network}"
            )
            if registry.resolve(config.paywall.network) is None:
                print(f"Error: paywall network {config.paywall.network} is not configured", file=sys.stderr)
                return 1
        else:
            print("  Paywall: DISABLED (paywall.recipient not set)")
        return 0

    init_deps(config)

    host = args.host or config.api.listen_host
    port = args.port or config.api.listen_port

    print(f"Starting istory-gate on {host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=args.log_level,
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
