"""Identity mapping routes: external ids, assistants and directory sync."""

from uuid import UUID

from fastapi import APIRouter, status

from voxledger.api.deps import IdentityResolverDep
from voxledger.api.schemas import (
    AssistantBindRequest,
    AssistantOwnerResponse,
    DirectoryEntryRequest,
    IdentityResponse,
    ResolvedIdentityResponse,
)
from voxledger.domain.identity.resolver import DirectoryEntry
from voxledger.infrastructure.database.models.identity import Platform
from voxledger.shared.exceptions import NotFoundError

router = APIRouter(tags=["Identities"])


@router.get("/identities/{user_id}", response_model=IdentityResponse)
async def get_identity(user_id: UUID, resolver: IdentityResolverDep) -> IdentityResponse:
    """Every external id bound to a user."""
    identity = await resolver.identity(user_id)
    return IdentityResponse(**identity.as_dict())


@router.get(
    "/identities/{platform}/{external_id}",
    response_model=ResolvedIdentityResponse,
)
async def resolve_identity(
    platform: Platform,
    external_id: str,
    resolver: IdentityResolverDep,
) -> ResolvedIdentityResponse:
    internal_id = await resolver.resolve(platform, external_id)
    return ResolvedIdentityResponse(
        platform=platform.value,
        external_id=external_id,
        internal_id=str(internal_id),
    )


@router.put(
    "/identities/{user_id}/{platform}/{external_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def bind_identity(
    user_id: UUID,
    platform: Platform,
    external_id: str,
    resolver: IdentityResolverDep,
) -> None:
    """Bind an external id to a user; repeating the same binding is a no-op."""
    await resolver.bind(user_id, platform, external_id)


@router.put("/assistants/{assistant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def bind_assistant(
    assistant_id: str,
    body: AssistantBindRequest,
    resolver: IdentityResolverDep,
) -> None:
    await resolver.bind_assistant(assistant_id, body.user_id, body.name)


@router.get("/assistants/{assistant_id}/owner", response_model=AssistantOwnerResponse)
async def get_assistant_owner(
    assistant_id: str,
    resolver: IdentityResolverDep,
) -> AssistantOwnerResponse:
    owner = await resolver.owner_of_assistant(assistant_id)
    if owner is None:
        raise NotFoundError("Assistant", assistant_id)
    return AssistantOwnerResponse(assistant_id=assistant_id, user_id=str(owner))


@router.put("/directory/{internal_id}", response_model=IdentityResponse)
async def sync_directory_entry(
    internal_id: UUID,
    body: DirectoryEntryRequest,
    resolver: IdentityResolverDep,
) -> IdentityResponse:
    """Mirror one identity-directory row into users and identity_links."""
    identity = await resolver.sync_directory_entry(
        DirectoryEntry(internal_id=internal_id, **body.model_dump())
    )
    return IdentityResponse(**identity.as_dict())
