#!/usr/bin/env python3
# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Delete stale one-time codes. Run: python -m authstack_server.scripts.purge_codes [--days N]

Codes are overwritten on re-send and marked used on login but never removed by
the API; run this from cron to keep the table small.
"""

import argparse
import asyncio
from datetime import timedelta

from authstack_server.config import settings
from authstack_server.database import create_engine, create_session_maker, init_db
from authstack_server.services.auth_service import utcnow
from authstack_server.services.credential_store import CredentialStore


async def purge(days: float) -> int:
    engine = create_engine(settings)
    try:
        await init_db(engine)
        async with create_session_maker(engine)() as session:
            return await CredentialStore(session).purge_stale_codes(utcnow() - timedelta(days=days))
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--days", type=float, default=7, help="keep codes newer than this (default 7)")
    args = parser.parse_args()
    deleted = asyncio.run(purge(args.days))
    print(f"Deleted {deleted} one-time code(s).")


if __name__ == "__main__":
    main()
