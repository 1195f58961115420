"""Identity mapping repositories."""

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select

from voxledger.infrastructure.database.models.identity import Assistant, IdentityLink, Platform
from voxledger.infrastructure.database.repositories.base import BaseRepository


class IdentityLinkRepository(BaseRepository[IdentityLink]):
    """Repository for (platform, external_id) -> internal_id links."""

    model_class = IdentityLink

    async def find_link(self, platform: Platform, external_id: str) -> IdentityLink | None:
        result = await self.session.execute(
            select(IdentityLink).where(
                IdentityLink.platform == platform.value,
                IdentityLink.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_internal_id(self, platform: Platform, external_id: str) -> UUID | None:
        result = await self.session.execute(
            select(IdentityLink.internal_id).where(
                IdentityLink.platform == platform.value,
                IdentityLink.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, internal_id: UUID) -> Sequence[IdentityLink]:
        result = await self.session.execute(
            select(IdentityLink).where(IdentityLink.internal_id == internal_id)
        )
        return result.scalars().all()

    async def insert_if_absent(
        self,
        platform: Platform,
        external_id: str,
        internal_id: UUID,
    ) -> bool:
        """Insert a link unless any uniqueness constraint already holds one.

        Returns True when this call created the link.
        """
        stmt = (
            self.upsert_statement()
            .values(platform=platform.value, external_id=external_id, internal_id=internal_id)
            .on_conflict_do_nothing()
            .returning(IdentityLink.external_id)
        )
        result = await self.execute(stmt)
        return result.scalar_one_or_none() is not None


class AssistantRepository(BaseRepository[Assistant]):
    """Repository for voice assistants and their owners."""

    model_class = Assistant

    async def get_by_voice_id(self, voice_assistant_id: str) -> Assistant | None:
        result = await self.session.execute(
            select(Assistant).where(Assistant.voice_assistant_id == voice_assistant_id)
        )
        return result.scalar_one_or_none()

    async def owner_of(self, voice_assistant_id: str) -> UUID | None:
        result = await self.session.execute(
            select(Assistant.user_id).where(Assistant.voice_assistant_id == voice_assistant_id)
        )
        return result.scalar_one_or_none()

    async def insert_if_absent(
        self,
        voice_assistant_id: str,
        user_id: UUID,
        name: str | None,
    ) -> bool:
        stmt = (
            self.upsert_statement()
            .values(voice_assistant_id=voice_assistant_id, user_id=user_id, name=name)
            .on_conflict_do_nothing(index_elements=["voice_assistant_id"])
            .returning(Assistant.id)
        )
        result = await self.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def names_for(self, voice_assistant_ids: Iterable[str]) -> dict[str, str | None]:
        ids = list(voice_assistant_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(Assistant.voice_assistant_id, Assistant.name).where(
                Assistant.voice_assistant_id.in_(ids)
            )
        )
        return {row.voice_assistant_id: row.name for row in result.all()}
