#!/usr/bin/env python3
# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Create a password user. Run: python -m authstack_server.scripts.create_user"""

import asyncio
import getpass
import sys

from authstack_server.auth import PasswordHasher, TokenIssuer
from authstack_server.config import settings
from authstack_server.database import create_engine, create_session_maker, init_db
from authstack_server.errors import AuthError
from authstack_server.services.auth_service import AuthService
from authstack_server.services.credential_store import CredentialStore
from authstack_server.services.email import EmailNotifier


async def main():
    first_name = input("First name: ").strip()
    last_name = input("Last name: ").strip()
    email = input("Email: ").strip()
    password = getpass.getpass("Password: ")

    engine = create_engine(settings)
    try:
        await init_db(engine)
        async with create_session_maker(engine)() as session:
            service = AuthService(
                CredentialStore(session),
                PasswordHasher(settings.bcrypt_rounds),
                TokenIssuer(settings.jwt_secret, settings.jwt_algorithm, settings.jwt_expire_minutes),
                EmailNotifier(settings),
            )
            try:
                result = await service.register(first_name, last_name, email, password)
            except AuthError as e:
                print(e.message)
                sys.exit(1)
            print(f"User created: {result.user.id}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
