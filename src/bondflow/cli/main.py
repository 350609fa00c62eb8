# bondflow/cli/main.py

"""
bondflow CLI
------------

Provides:
  - deploy:  atomic fund + deploy + activate of one account
  - address: counterfactual address for a salt label
  - ledger:  recorded deployment outcomes
"""

from __future__ import annotations
import argparse
import asyncio
import inspect
import sys
from typing import List, Optional

from bondflow.core.settings import BondFlowSettings, get_settings
from bondflow.protocol.errors import BondFlowError
from bondflow.utils.logging import configure_logging

from .commands import cmd_address, cmd_deploy, cmd_ledger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bondflow",
        description="Atomic funding and activation of modular smart accounts",
    )
    parser.add_argument("--log-level", default=None, help="Override BONDFLOW_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command")

    # deploy
    p_deploy = sub.add_parser("deploy", help="Fund, deploy and activate one account")
    p_deploy.add_argument("--salt-label", default=None, help="Salt label (default: <prefix>-<unix time>)")
    p_deploy.add_argument("--nonce", type=int, default=None, help="Attestation nonce (default: unix time)")
    p_deploy.add_argument("--no-preflight", action="store_true", help="Skip the eth_call dry run")
    p_deploy.add_argument("--ledger", default=None, help="Ledger file (default: BONDFLOW_LEDGER_PATH)")
    p_deploy.set_defaults(func=cmd_deploy)

    # address
    p_addr = sub.add_parser("address", help="Print the precomputed account address")
    p_addr.add_argument("--salt-label", default=None, help="Salt label (default: <prefix>-<unix time>)")
    p_addr.set_defaults(func=cmd_address)

    # ledger
    p_ledger = sub.add_parser("ledger", help="List recorded deployments")
    p_ledger.add_argument("--output", choices=["table", "json"], default="table")
    p_ledger.add_argument("--ledger", default=None, help="Ledger file (default: BONDFLOW_LEDGER_PATH)")
    p_ledger.set_defaults(func=cmd_ledger)

    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[BondFlowSettings] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = settings or get_settings()
        configure_logging(args.log_level or settings.runtime.log_level)
        result = args.func(args, settings)
        if inspect.iscoroutine(result):
            result = asyncio.run(result)
    except BondFlowError as e:
        print(f"Error ({e.code.value}): {e.describe()}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return result


if __name__ == "__main__":
    sys.exit(main())
