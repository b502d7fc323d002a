#!/usr/bin/env python3
"""
Store device-auth credentials for the platform API.

Device auth is generated out-of-band (an authorization-code login followed
by a deviceAuth request); this script only persists the result so the
token manager can pick it up when nothing is configured in the environment.

Usage:
    python -m scripts.register_device_auth --account-id ... --device-id ... --secret ...
    python -m scripts.register_device_auth --account-id ... --device-id ... --secret ... --verify
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from esports_ingest.database import AsyncSessionLocal
from esports_ingest.services.credential_store import DeviceCredentialStore
from esports_ingest.services.platform_auth import (
    Credential,
    CredentialOrigin,
    PlatformAuthClient,
    PlatformAuthError,
)

LOGGER = logging.getLogger("register_device_auth")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Persist device-auth credentials")
    parser.add_argument("--account-id", required=True, help="Platform account id")
    parser.add_argument("--device-id", required=True)
    parser.add_argument("--secret", required=True)
    parser.add_argument("--display-name", default=None)
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Exchange the credential once before storing it",
    )
    return parser.parse_args(argv)


async def register(args: argparse.Namespace, store: DeviceCredentialStore, auth: PlatformAuthClient | None = None) -> int:
    if args.verify:
        auth = auth or PlatformAuthClient()
        candidate = Credential(
            source_id="cli",
            device_id=args.device_id,
            shared_secret=args.secret,
            subject_id=args.account_id,
            origin=CredentialOrigin.persisted_store,
        )
        try:
            token = await auth.exchange_device_auth(candidate)
        except PlatformAuthError as e:
            LOGGER.error("Credential rejected: %s", e)
            return 1
        LOGGER.info("Credential accepted for account %s", token.issued_account_id or args.account_id)

    credential = await store.upsert(args.account_id, args.device_id, args.secret, args.display_name)
    LOGGER.info("Stored credential %s", credential)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    return asyncio.run(register(args, DeviceCredentialStore(AsyncSessionLocal)))


if __name__ == "__main__":
    sys.exit(main())
