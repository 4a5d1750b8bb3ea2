"""
Create an admin account. Admins cannot register through the API.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crowdspark.config import get_settings
from crowdspark.db import DbClient, DuplicateRecordError, SqlDbClient
from crowdspark.security import hash_password
from crowdspark.types import Role

logger = logging.getLogger(__name__)


def create_admin(
    db: DbClient, *, username: str, email: str, password: str, rounds: int = 10
) -> str:
    user = db.create_user(
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
        role=Role.ADMIN,
    )
    return user.user_id


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a CrowdSpark admin user")
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument(
        "--password",
        default=None,
        help="Admin password (prompted for when omitted)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    settings = get_settings()
    database_url = args.database_url or settings.database_url
    if not database_url:
        logger.error("DATABASE_URL is not configured")
        return 1

    password = args.password or getpass.getpass("Admin password: ")
    if not password:
        logger.error("Password must not be empty")
        return 1

    db = SqlDbClient(database_url)
    try:
        user_id = create_admin(
            db,
            username=args.username,
            email=args.email,
            password=password,
            rounds=settings.bcrypt_rounds,
        )
    except DuplicateRecordError:
        logger.error("A user with email %s already exists", args.email)
        return 1

    logger.info("Created admin %s (%s)", args.username, user_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
