# User info router: OpenID userinfo and profile updates.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from pocketauth.api.deps import require_scope, require_user
from pocketauth.api.v1.schemas.oauth2 import (
    UpdateUserRequest,
    UpdateUserResponse,
    UserInfoResponse,
)
from pocketauth.oauth2.guard import AuthenticatedUser, userinfo_claims

logger = logging.getLogger(__name__)

router = APIRouter(tags=["User Info"])


@router.get("/userinfo", response_model=UserInfoResponse, response_model_exclude_none=True)
def userinfo(auth: AuthenticatedUser = Depends(require_scope("openid"))):
    """Claims about the token's user, limited to the granted scopes."""
    return userinfo_claims(auth)


@router.patch("/update/user", response_model=UpdateUserResponse)
def update_user(body: UpdateUserRequest, auth: AuthenticatedUser = Depends(require_user)):
    """Update a profile. Users edit themselves; admins edit anyone."""
    from pocketauth.oauth2.server import get_oauth_server

    changes = body.model_dump(exclude={"user_id"}, exclude_none=True)
    user = get_oauth_server().update_profile(auth, body.user_id, changes)
    return UpdateUserResponse(success=True, user=user.public_view())
