"""User API key routes.

Route handlers for the per-user credential vault under /settings/api-keys.
Routes are transport-only: each calls exactly one service function.

All routes require authentication and act on the viewer's own keys only.
A key id belonging to another user yields 404 E_KEY_NOT_FOUND.

Security invariants:
- Responses never include encrypted_key, key_nonce, master_key_version or key_hash
- Plaintext keys are never logged
- Keys are encrypted before storage
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from querygenie.api.deps import get_db
from querygenie.auth.middleware import Viewer, get_viewer
from querygenie.responses import success_response
from querygenie.schemas.keys import UserApiKeyCreate, UserApiKeyUpdate
from querygenie.services import user_keys as user_keys_service

router = APIRouter(prefix="/settings/api-keys")


@router.get("")
def list_keys(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the viewer's API keys, ordered by provider, with a fixed mask.

    Returns:
        {"data": [UserApiKeyOut, ...]}
    """
    keys = user_keys_service.list_user_keys(db=db, user_id=viewer.user_id)
    return success_response([k.model_dump(mode="json") for k in keys])


@router.post("", status_code=201)
def upsert_key(
    body: UserApiKeyCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    response: Response,
) -> dict:
    """Add or replace the viewer's key for a provider.

    Returns:
        201 Created (new key): {"data": UserApiKeyOut}
        200 OK (replaced key): {"data": UserApiKeyOut}
    """
    key_out, is_created = user_keys_service.upsert_user_key(
        db=db,
        user_id=viewer.user_id,
        provider=body.provider,
        name=body.name,
        api_key=body.key,
    )

    if not is_created:
        response.status_code = 200

    return success_response(key_out.model_dump(mode="json"))


@router.get("/check")
def check_keys(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Report which providers (and models) the viewer has an active key for."""
    result = user_keys_service.available_providers(db=db, user_id=viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/{key_id}/reveal")
def reveal_key(
    key_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Return the key's first and last four characters around a mask.

    Errors:
        E_KEY_NOT_FOUND (404): Key doesn't exist or isn't the viewer's.
    """
    revealed = user_keys_service.reveal_user_key(db=db, user_id=viewer.user_id, key_id=key_id)
    return success_response(revealed.model_dump(mode="json"))


@router.patch("/{key_id}")
def update_key(
    key_id: UUID,
    body: UserApiKeyUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Rename or (de)activate a key.

    Errors:
        E_KEY_NOT_FOUND (404): Key doesn't exist or isn't the viewer's.
    """
    key_out = user_keys_service.update_user_key(
        db=db,
        user_id=viewer.user_id,
        key_id=key_id,
        is_active=body.is_active,
        name=body.name,
    )
    return success_response(key_out.model_dump(mode="json"))


@router.delete("/{key_id}", status_code=204)
def delete_key(
    key_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a key.

    Errors:
        E_KEY_NOT_FOUND (404): Key doesn't exist or isn't the viewer's.
    """
    user_keys_service.delete_user_key(db=db, user_id=viewer.user_id, key_id=key_id)
    return Response(status_code=204)
