"""Cross-platform identity resolution.

Every user has one internal id. Billing, CRM and voice platforms each know
the user under their own external id; identity_links maps those back. A
(platform, external_id) pair points at exactly one user, and a user holds at
most one external id per platform.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from voxledger.infrastructure.database.models.identity import Platform
from voxledger.infrastructure.database.models.user import User
from voxledger.infrastructure.database.repositories.identity import (
    AssistantRepository,
    IdentityLinkRepository,
)
from voxledger.infrastructure.database.repositories.user import UserRepository
from voxledger.shared.exceptions import IdentityConflictError, NotFoundError
from voxledger.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CrossPlatformIdentity:
    internal_id: UUID
    billing_customer_id: str | None = None
    crm_contact_id: str | None = None
    voice_platform_user_id: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "internal_id": str(self.internal_id),
            "billing_customer_id": self.billing_customer_id,
            "crm_contact_id": self.crm_contact_id,
            "voice_platform_user_id": self.voice_platform_user_id,
        }


@dataclass(frozen=True)
class DirectoryEntry:
    """One row of the external identity directory."""

    internal_id: UUID
    email: str
    name: str | None = None
    plan: str | None = None
    subscription_started_at: datetime | None = None
    billing_customer_id: str | None = None
    crm_contact_id: str | None = None
    voice_platform_user_id: str | None = None

    def external_ids(self) -> list[tuple[Platform, str]]:
        pairs = [
            (Platform.BILLING, self.billing_customer_id),
            (Platform.CRM, self.crm_contact_id),
            (Platform.VOICE, self.voice_platform_user_id),
        ]
        return [(platform, value) for platform, value in pairs if value]


class IdentityResolver:
    """Bind and resolve external identifiers and assistant ownership.

    Never creates users: a user must already exist (mirrored from the
    registration flow or the directory) before anything can be bound to it.
    """

    def __init__(
        self,
        link_repo: IdentityLinkRepository,
        assistant_repo: AssistantRepository,
        user_repo: UserRepository,
    ) -> None:
        self.link_repo = link_repo
        self.assistant_repo = assistant_repo
        self.user_repo = user_repo

    async def find(self, platform: Platform, external_id: str) -> UUID | None:
        return await self.link_repo.find_internal_id(platform, external_id)

    async def resolve(self, platform: Platform, external_id: str) -> UUID:
        internal_id = await self.find(platform, external_id)
        if internal_id is None:
            raise NotFoundError("Identity", f"{platform.value}:{external_id}")
        return internal_id

    async def bind(self, internal_id: UUID, platform: Platform, external_id: str) -> None:
        """Bind an external id to a user.

        Idempotent when the same binding already exists. Raises
        IdentityConflictError when the external id belongs to someone else
        or the user already holds a different id on this platform.
        """
        if not await self.user_repo.exists(internal_id):
            raise NotFoundError("User", str(internal_id))

        created = await self.link_repo.insert_if_absent(platform, external_id, internal_id)
        if created:
            logger.info(
                "identity_bound",
                platform=platform.value,
                external_id=external_id,
                internal_id=str(internal_id),
            )
            return

        link = await self.link_repo.find_link(platform, external_id)
        if link is not None and link.internal_id == internal_id:
            return

        logger.warning(
            "identity_bind_conflict",
            platform=platform.value,
            external_id=external_id,
            internal_id=str(internal_id),
            bound_to=str(link.internal_id) if link is not None else None,
        )
        raise IdentityConflictError(
            platform=platform.value,
            external_id=external_id,
            internal_id=str(internal_id),
            bound_to=str(link.internal_id) if link is not None else None,
        )

    async def identity(self, internal_id: UUID) -> CrossPlatformIdentity:
        if not await self.user_repo.exists(internal_id):
            raise NotFoundError("User", str(internal_id))

        links = await self.link_repo.list_for_user(internal_id)
        ids = {link.platform: link.external_id for link in links}
        return CrossPlatformIdentity(
            internal_id=internal_id,
            billing_customer_id=ids.get(Platform.BILLING.value),
            crm_contact_id=ids.get(Platform.CRM.value),
            voice_platform_user_id=ids.get(Platform.VOICE.value),
        )

    # ----- Assistants -----

    async def bind_assistant(
        self,
        voice_assistant_id: str,
        internal_id: UUID,
        name: str | None = None,
    ) -> None:
        if not await self.user_repo.exists(internal_id):
            raise NotFoundError("User", str(internal_id))

        created = await self.assistant_repo.insert_if_absent(voice_assistant_id, internal_id, name)
        if created:
            logger.info(
                "assistant_bound",
                assistant_id=voice_assistant_id,
                internal_id=str(internal_id),
            )
            return

        owner = await self.assistant_repo.owner_of(voice_assistant_id)
        if owner != internal_id:
            raise IdentityConflictError(
                platform="assistant",
                external_id=voice_assistant_id,
                internal_id=str(internal_id),
                bound_to=str(owner),
            )

    async def owner_of_assistant(self, voice_assistant_id: str) -> UUID | None:
        return await self.assistant_repo.owner_of(voice_assistant_id)

    # ----- Event attribution -----

    async def resolve_event_owner(
        self,
        assistant_id: str | None,
        explicit_user_id: str | None,
    ) -> tuple[UUID | None, str]:
        """Find who owns a usage event.

        Order: assistant owner, then metadata user id as an internal id, then
        metadata user id as a voice-platform user id. Returns the user id (or
        None) and the rule that matched, or the reason nothing did.
        """
        if assistant_id:
            owner = await self.assistant_repo.owner_of(assistant_id)
            if owner is not None:
                return owner, "assistant_owner"

        if explicit_user_id:
            candidate = _parse_uuid(explicit_user_id)
            if candidate is not None and await self.user_repo.exists(candidate):
                return candidate, "internal_id"
            linked = await self.find(Platform.VOICE, explicit_user_id)
            if linked is not None:
                return linked, "voice_platform_id"
            return None, "unknown_user"

        if assistant_id:
            return None, "unknown_assistant"
        return None, "no_owner_hint"

    # ----- Directory sync -----

    async def sync_directory_entry(self, entry: DirectoryEntry) -> CrossPlatformIdentity:
        """Mirror a directory row: upsert the user, then bind each present id."""
        user: User = await self.user_repo.upsert(
            entry.internal_id,
            email=entry.email,
            name=entry.name,
            plan=entry.plan.upper() if entry.plan else None,
            subscription_started_at=entry.subscription_started_at,
        )
        for platform, external_id in entry.external_ids():
            await self.bind(user.id, platform, external_id)

        logger.info(
            "directory_entry_synced",
            internal_id=str(user.id),
            platforms=[platform.value for platform, _ in entry.external_ids()],
        )
        return await self.identity(user.id)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None
