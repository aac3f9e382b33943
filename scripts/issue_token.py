"""
Provision a user from the identity provider's id and print a signed token.

Usage: python scripts/issue_token.py <external_id> [username] [email] [--admin]
"""
import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import AsyncSessionLocal
from models.user import ROLE_ADMIN, ROLE_USER
from services.user_service import UserService
from core.security import generate_token
from core.logger import setup_logging, logger

async def issue_token(external_id: str, username: str = None, email: str = None, admin: bool = False):
    async with AsyncSessionLocal() as session:
        service = UserService(session)
        user, is_new = await service.get_or_create_user(
            external_id,
            username=username,
            email=email,
            role=ROLE_ADMIN if admin else ROLE_USER,
        )
        logger.info("User ready", user_id=user.id, role=user.role, is_new=is_new)
    print(generate_token(external_id))

if __name__ == "__main__":
    setup_logging()
    args = [a for a in sys.argv[1:] if a != "--admin"]
    if not args:
        print(__doc__)
        sys.exit(1)
    asyncio.run(issue_token(*args[:3], admin="--admin" in sys.argv))
