"""
create_tables.py
----------------
One-shot script to create all database tables and provision IT accounts.
Use this for quick setup. For production migrations, use Alembic instead.

IT accounts cannot be created through the API; this script is the only way
one comes to exist.

Usage:
    python create_tables.py
    python create_tables.py --it-username ops --it-password 'change-me-now'
"""

import argparse
import asyncio
from typing import Optional

from propertypro.core.logging import configure_logging, get_logger
from propertypro.core.security import hash_password
from propertypro.db.session import build_engine, build_session_factory
from propertypro.models import Base  # Imports all models so metadata is populated
from propertypro.models.user import User, UserRole
from propertypro.storage.sql import SqlStorageProvider

logger = get_logger(__name__)


async def create_all_tables(
    it_username: Optional[str] = None,
    it_password: Optional[str] = None,
    it_full_name: Optional[str] = None,
) -> None:
    engine = build_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("All tables created")

    if it_username:
        provider = SqlStorageProvider(build_session_factory(engine))
        async with provider.session() as storage:
            if await storage.get_user_by_username(it_username) is not None:
                logger.info("IT account already exists", username=it_username)
            else:
                user = await storage.create_user(
                    User(
                        username=it_username,
                        hashed_password=hash_password(it_password),
                        role=UserRole.it.value,
                        full_name=it_full_name,
                        is_active=True,
                    )
                )
                logger.info("IT account provisioned", user_id=user.id, username=it_username)

    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create tables and provision IT accounts.")
    parser.add_argument("--it-username", help="Username of an IT account to provision")
    parser.add_argument("--it-password", help="Password for the IT account (min 8 chars)")
    parser.add_argument("--it-full-name", help="Display name for the IT account")
    args = parser.parse_args()

    if args.it_username and (not args.it_password or len(args.it_password) < 8):
        parser.error("--it-password of at least 8 characters is required with --it-username")

    configure_logging()
    asyncio.run(create_all_tables(args.it_username, args.it_password, args.it_full_name))


if __name__ == "__main__":
    main()
