"""
Bearer-token authentication

Tokens are opaque to this service. They are introspected against the
identity service, which answers with the caller's id, role and (for
doctors) the provider profile they own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import AUTH_SERVICE_TIMEOUT, AUTH_SERVICE_URL
from .constants import Role

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    provider_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def can_manage_provider(self, provider_id: int) -> bool:
        """Admins manage every provider; doctors only their own profile"""
        if self.is_admin:
            return True
        return self.role == Role.DOCTOR and self.provider_id == provider_id


async def introspect_token(token: str) -> dict:
    """Ask the identity service who owns this token"""
    try:
        async with httpx.AsyncClient(timeout=AUTH_SERVICE_TIMEOUT) as client:
            response = await client.post(
                f"{AUTH_SERVICE_URL}/introspect",
                json={"token": token},
            )
    except httpx.HTTPError as e:
        logger.error(f"❌ Identity service unreachable: {str(e)}")
        raise HTTPException(status_code=503, detail="Authentication service unavailable") from e

    if response.status_code != 200:
        logger.warning(f"⚠️ Token introspection rejected: HTTP {response.status_code}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    claims = response.json()
    if not claims.get("active", True):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return claims


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """Resolve the authenticated caller"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    claims = await introspect_token(credentials.credentials)

    user_id = claims.get("sub") or claims.get("user_id")
    role = claims.get("role", Role.PATIENT)
    if not user_id or role not in (Role.PATIENT, Role.DOCTOR, Role.ADMIN):
        logger.error(f"❌ Token missing usable claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    provider_id = claims.get("providerId")
    return Principal(
        user_id=str(user_id),
        role=role,
        provider_id=int(provider_id) if provider_id is not None else None,
    )


def require_provider_access(principal: Principal, provider_id: int) -> None:
    if not principal.can_manage_provider(provider_id):
        logger.warning(f"⚠️ User {principal.user_id} denied access to provider {provider_id}")
        raise HTTPException(status_code=403, detail="Not allowed to manage this provider")
