"""User repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from voxledger.infrastructure.database.models.user import User
from voxledger.infrastructure.database.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for users mirrored from the registration flow."""

    model_class = User

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def exists(self, user_id: UUID) -> bool:
        result = await self.session.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None

    async def upsert(
        self,
        user_id: UUID,
        *,
        email: str,
        name: str | None = None,
        plan: str | None = None,
        subscription_started_at: datetime | None = None,
    ) -> User:
        """Create or refresh a user row keyed by its internal id."""
        user = await self.get_by_id(user_id)
        if user is None:
            return await self.create(
                User(
                    id=user_id,
                    email=email,
                    name=name,
                    plan=plan or "FREE",
                    subscription_started_at=subscription_started_at,
                )
            )

        user.email = email
        if name is not None:
            user.name = name
        if plan is not None:
            user.plan = plan
        if subscription_started_at is not None:
            user.subscription_started_at = subscription_started_at
        await self.session.flush()
        return user
