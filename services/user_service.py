from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models.user import User, ROLE_USER
from core.exceptions import Unauthorized, NotFound, Forbidden
from core.logger import logger
from core.security import Identity

class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, identity: Optional[Identity]) -> User:
        """Resolve the caller's user row; the identity must be explicit."""
        if identity is None:
            raise Unauthorized()
        result = await self.db.execute(select(User).filter(User.external_id == identity.external_id))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFound("User not found", external_id=identity.external_id)
        return user

    async def require_admin(self, identity: Optional[Identity]) -> User:
        user = await self.get_user(identity)
        if not user.is_admin:
            logger.warning("Admin access denied", user_id=user.id)
            raise Forbidden(user_id=user.id)
        return user

    async def get_role(self, identity: Optional[Identity]) -> str:
        user = await self.get_user(identity)
        return user.role

    async def get_or_create_user(self, external_id: str, **kwargs) -> tuple[User, bool]:
        result = await self.db.execute(select(User).filter(User.external_id == external_id))
        user = result.scalar_one_or_none()
        is_new = False

        if not user:
            kwargs.setdefault("role", ROLE_USER)
            user = User(external_id=external_id, **kwargs)
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            is_new = True
            logger.info("New user created", external_id=external_id)
        else:
            # Fill missing profile info from the identity provider
            needs_commit = False
            for field in ("username", "email", "photo"):
                if kwargs.get(field) and not getattr(user, field):
                    setattr(user, field, kwargs[field])
                    needs_commit = True

            if needs_commit:
                await self.db.commit()

        return user, is_new
