"""
Bearer credential verification for staff endpoints.

Tokens are issued elsewhere (HS256, shared secret). We only verify them and
turn the claims into an actor bound to the tenant in the request path.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orderhub.core.config import JWT_ALGORITHM, JWT_SECRET
from orderhub.services.actors import Actor, actor_from_claims
from orderhub.services.exceptions import PermissionDenied

log = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(claims: Dict[str, Any], ttl_seconds: int = 3600) -> str:
    """Signs a staff token. Used by the seed script and tests."""
    now = int(time.time())
    payload = {**claims, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        log.warning(f"JWT validation failed: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def resolve_actor(token: Optional[str], tenant_id: UUID) -> Actor:
    """Verifies `token` and returns its actor, which must belong to `tenant_id`."""
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    actor = actor_from_claims(decode_access_token(token))
    if actor.tenant_id != tenant_id:
        raise PermissionDenied("Credential is not valid for this tenant")
    return actor


async def get_current_actor(
    tenant_id: UUID,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    return resolve_actor(credentials.credentials if credentials else None, tenant_id)


def require_capability(capability: str, message: str) -> Callable:
    """Dependency factory: the actor must have `capability` set (e.g. ``can_cancel``)."""

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not getattr(actor, capability, False):
            raise PermissionDenied(message)
        return actor

    return dependency


require_manager = require_capability("can_restock", "Manager access required")
require_updater = require_capability("can_update", "Manager, kitchen or rider access required")
require_history = require_capability("can_view_history", "Manager access required")
require_rider_dispatch = require_capability("can_bind_riders", "Manager or kitchen access required")
