"""
Authentication and Authorization for Contractor Hub.

Supports:
- JWT session (HS256, ``sub`` = user id) via ``Authorization: Bearer`` or the
  ``ch_session`` cookie
- Bare UUID bearer tokens for local development (``CH_ALLOW_UUID_BEARER``)
- Site admin check
- Contractor scoping by spectrum id with a membership check (permission
  flags are checked by the contractor service)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.models.contractor import Contractor
from app.models.user import User
from app.services import permissions
from contractor_hub_shared.schemas.common import SiteRole

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "ch_session"

auth_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {"sub": str(user_id), "iat": now, "exp": exp, "jti": jti}
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def _user_id_from_token(token: str) -> uuid.UUID:
    if settings.allow_uuid_bearer:
        try:
            return uuid.UUID(token)
        except ValueError:
            pass
    try:
        payload = decode_jwt(token)
        return uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired session")


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

async def get_current_user(
    request: Request,
    authorization: Optional[str] = Depends(auth_header),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Main authentication dependency. Tries the bearer header, then the cookie."""
    token: str | None = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
    if not token:
        token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user_id = _user_id_from_token(token)
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.banned:
        log.info("auth.banned_user_rejected", user_id=str(user.id))
        raise HTTPException(status_code=403, detail="Account is banned")

    request.state.user = user
    return user


async def require_site_admin(user: User = Depends(get_current_user)) -> User:
    """Requires the site-level admin role."""
    if user.role != SiteRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user


# ---------------------------------------------------------------------------
# Contractor scoping
# ---------------------------------------------------------------------------

class ContractorContext:
    """Container for an authenticated user + the contractor in the path."""

    def __init__(self, user: User, contractor: Contractor):
        self.user = user
        self.contractor = contractor
        self.user_id = user.id
        self.contractor_id = contractor.id


async def resolve_contractor(spectrum_id: str, session: AsyncSession) -> Contractor:
    """Resolve a contractor by spectrum id (case-insensitive), raise 404 if not found."""
    result = await session.execute(
        select(Contractor).where(Contractor.spectrum_id == spectrum_id.upper())
    )
    contractor = result.scalar_one_or_none()
    if not contractor:
        raise HTTPException(status_code=404, detail="Contractor not found")
    return contractor


async def get_contractor_member(
    spectrum_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> ContractorContext:
    """Any contractor member (or site admin) can access this endpoint."""
    contractor = await resolve_contractor(spectrum_id, session)
    if user.role != SiteRole.ADMIN.value and not await permissions.is_member(
        session, contractor.id, user.id
    ):
        # Non-members cannot tell a private contractor from a missing one
        raise HTTPException(status_code=404, detail="Contractor not found")
    return ContractorContext(user=user, contractor=contractor)
