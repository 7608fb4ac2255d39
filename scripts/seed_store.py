#!/usr/bin/env python3
"""
Seed and inspect the proxy's Redis store.

Operators use this to register service credentials and to set or read
user balances without going through the HTTP surface. Keys are written in
the same format the proxy reads: ``key-{credential}`` and ``user-{id}``.
"""

import argparse
import asyncio
import json
import os
import secrets
import sys
from typing import Optional

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from service_proxy.app.auth.service_key import credential_key  # noqa: E402
from service_proxy.app.ledger.balance import BalanceLedger, balance_key, format_balance  # noqa: E402
from service_proxy.app.store.redis_store import RedisStore  # noqa: E402


async def issue_key(store: RedisStore, credential: Optional[str] = None) -> dict:
    """Register a credential, generating one when none is given."""
    credential = credential or secrets.token_urlsafe(24)
    await store.set(credential_key(credential), "1")
    return {"service_key": credential}


async def revoke_key(store: RedisStore, credential: str) -> dict:
    return {"service_key": credential, "revoked": await store.delete(credential_key(credential))}


async def set_balance(store: RedisStore, user_id: int, balance: float) -> dict:
    await store.set(balance_key(user_id), format_balance(balance))
    return (await BalanceLedger(store).get_balance(user_id)).to_dict()


async def show_balance(store: RedisStore, user_id: int) -> dict:
    return (await BalanceLedger(store).get_balance(user_id)).to_dict()


async def run(args: argparse.Namespace, store: Optional[RedisStore] = None) -> dict:
    """Execute one subcommand against the store."""
    owned = store is None
    if owned:
        store = RedisStore.from_url(args.redis_url)
        await store.start()
    try:
        if args.command == "issue-key":
            return await issue_key(store, args.key)
        if args.command == "revoke-key":
            return await revoke_key(store, args.key)
        if args.command == "set-balance":
            return await set_balance(store, args.user_id, args.balance)
        return await show_balance(store, args.user_id)
    finally:
        if owned:
            await store.stop()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed and inspect the metered proxy's Redis store.")
    parser.add_argument("--redis-url", default=os.getenv("METER_REDIS_URL", "redis://localhost:6379/0"), help="Redis connection URL")
    commands = parser.add_subparsers(dest="command", required=True)

    issue = commands.add_parser("issue-key", help="Register a service credential")
    issue.add_argument("--key", default=None, help="Credential to register (generated when omitted)")

    revoke = commands.add_parser("revoke-key", help="Remove a service credential")
    revoke.add_argument("--key", required=True, help="Credential to remove")

    set_cmd = commands.add_parser("set-balance", help="Overwrite a user's balance")
    set_cmd.add_argument("user_id", type=int)
    set_cmd.add_argument("balance", type=float)

    show = commands.add_parser("show-balance", help="Print a user's balance")
    show.add_argument("user_id", type=int)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    try:
        result = asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[seed-store] failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
