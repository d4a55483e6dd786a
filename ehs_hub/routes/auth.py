"""
EHS Hub - Auth Router

Current-user resolution. Tokens are issued by the external auth service; this
router only reads them.
"""

from fastapi import APIRouter, HTTPException, Header, Depends
from typing import Optional

from ..services.identity import IdentityProvider, IdentityError, CurrentUser

router = APIRouter(prefix="/auth", tags=["auth"])

# Identity provider - set by main app
identity_provider: Optional[IdentityProvider] = None


def set_identity_provider(provider: IdentityProvider):
    global identity_provider
    identity_provider = provider


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Expected a Bearer token")
    return token.strip()


async def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[CurrentUser]:
    """Resolve the caller, or None when no token was sent."""
    if identity_provider is None:
        raise HTTPException(status_code=503, detail="Identity provider not configured")
    token = _bearer_token(authorization)
    try:
        return identity_provider.get_current_user(token)
    except IdentityError as e:
        raise HTTPException(status_code=401, detail=e.message)


async def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    """Resolve the caller; anonymous requests are rejected."""
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


@router.get("/me")
async def get_me(user: CurrentUser = Depends(get_current_user)):
    """Get current user info."""
    return user.to_dict()
