"""
Keys router — API key lifecycle for the calling owner.

Endpoints (all require a key with `keys:manage`):
  GET    /keys            — list the owner's keys (newest first)
  POST   /keys            — issue a key; the raw value is returned ONCE
  PATCH  /keys/{key_id}   — rename a key
  DELETE /keys/{key_id}   — revoke a key (soft; terminal)

Ownership: every lookup is scoped to the caller's owner_id, so another
owner's key id answers 404, never 403.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lynxa.auth.dependencies import get_key_store
from lynxa.auth.errors import KeyLimitReached
from lynxa.auth.permissions import MANAGE_KEYS
from lynxa.auth.rate_limit import require_permission
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.core.database import get_db_session
from lynxa.schemas.keys import KeyCreate, KeyCreated, KeyOut, KeyRename
from lynxa.services import audit
from lynxa.services.gate import client_ip
from lynxa.stores.keys import KeyStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Keys = Annotated[KeyStore, Depends(get_key_store)]
Manager = Annotated[VerifiedIdentity, Depends(require_permission(MANAGE_KEYS))]

_KEY_NOT_FOUND = HTTPException(
    status_code=status.HTTP_404_NOT_FOUND,
    detail="API key not found.",
)


@router.get(
    "",
    response_model=list[KeyOut],
    summary="List API keys",
)
async def list_keys(identity: Manager, keys: Keys) -> list[KeyOut]:
    records = await keys.list_for_owner(identity.owner_id)
    return [KeyOut.model_validate(record) for record in records]


@router.post(
    "",
    response_model=KeyCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a new API key",
    description=(
        "Returns the raw key exactly once. Only its SHA-256 digest is stored, "
        "so a lost key cannot be recovered — revoke it and issue another."
    ),
)
async def create_key(
    payload: KeyCreate,
    request: Request,
    identity: Manager,
    keys: Keys,
    session: DbSession,
) -> KeyCreated:
    try:
        raw_key, record = await keys.create(
            identity.owner_id,
            payload.name,
            payload.permissions,
            payload.rate_limit,
            payload.rate_limit_window_ms,
            expires_at=payload.expires_at,
        )
    except KeyLimitReached as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum of {exc.limit} active API keys reached.",
        )

    await audit.log_event(
        session,
        owner_id=identity.owner_id,
        event_type=audit.KEY_CREATED,
        description=f"API key '{record.name}' created",
        resource_type="api_key",
        resource_id=str(record.id),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    return KeyCreated.model_validate(
        {**KeyOut.model_validate(record).model_dump(), "key": raw_key},
    )


@router.patch(
    "/{key_id}",
    response_model=KeyOut,
    summary="Rename an API key",
)
async def rename_key(
    key_id: uuid.UUID,
    payload: KeyRename,
    request: Request,
    identity: Manager,
    keys: Keys,
    session: DbSession,
) -> KeyOut:
    record = await keys.rename(identity.owner_id, key_id, payload.name)
    if record is None:
        raise _KEY_NOT_FOUND

    await audit.log_event(
        session,
        owner_id=identity.owner_id,
        event_type=audit.KEY_UPDATED,
        description=f"API key renamed to '{record.name}'",
        resource_type="api_key",
        resource_id=str(key_id),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return KeyOut.model_validate(record)


@router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
    description=(
        "Revocation is permanent: a revoked key is rejected from then on. "
        "Revoking a key that is already revoked answers 404."
    ),
)
async def revoke_key(
    key_id: uuid.UUID,
    request: Request,
    identity: Manager,
    keys: Keys,
    session: DbSession,
) -> None:
    if not await keys.revoke(identity.owner_id, key_id):
        raise _KEY_NOT_FOUND

    await audit.log_event(
        session,
        owner_id=identity.owner_id,
        event_type=audit.KEY_REVOKED,
        description="API key revoked",
        resource_type="api_key",
        resource_id=str(key_id),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
