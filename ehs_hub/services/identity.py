"""
EHS Hub - Identity

Resolves who is making a request. Authentication happens elsewhere (the hosted
auth service issues the tokens); this module only turns a bearer token into a
user id and an optional role.

Role precedence lives here and nowhere else: an application role claim
(`app_role`) wins over the profile role (`role`).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict

import jwt as pyjwt

from .. import config

logger = logging.getLogger(__name__)


APP_ROLE_MAPPING = {
    "admin": "admin",
    "moderator": "supervisor",
}


class IdentityError(Exception):
    """Raised when a presented token cannot be trusted."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: Optional[str] = None

    def to_dict(self) -> Dict:
        return {"id": self.id, "role": self.role}


def resolve_role(claims: Dict) -> Optional[str]:
    """Pick the effective role from token claims."""
    app_role = APP_ROLE_MAPPING.get(claims.get("app_role") or "")
    if app_role:
        return app_role
    if claims.get("is_admin"):
        return "admin"
    return claims.get("role")


class IdentityProvider(ABC):
    """
    Abstract base class for identity providers.
    """

    @abstractmethod
    def get_current_user(self, token: Optional[str]) -> Optional[CurrentUser]:
        """
        Return the user behind a bearer token, or None when no token is given.

        Raises:
            IdentityError: a token was given but is invalid or expired.
        """
        pass


class JwtIdentityProvider(IdentityProvider):
    """Verifies HS256 (by default) JWTs; `sub` is the user id."""

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        audience: Optional[str] = None
    ):
        self.secret = secret or config.JWT_SECRET
        self.algorithm = algorithm or config.JWT_ALGORITHM
        self.audience = audience if audience is not None else config.JWT_AUDIENCE

    def get_current_user(self, token: Optional[str]) -> Optional[CurrentUser]:
        if not token:
            return None

        options = {"verify_aud": self.audience is not None}
        try:
            claims = pyjwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options,
            )
        except pyjwt.ExpiredSignatureError:
            raise IdentityError("Token expired")
        except pyjwt.InvalidTokenError as e:
            logger.warning("Rejected bearer token: %s", e)
            raise IdentityError("Invalid token")

        user_id = claims.get("sub")
        if not user_id:
            raise IdentityError("Token has no subject")

        return CurrentUser(id=str(user_id), role=resolve_role(claims))


class StaticIdentityProvider(IdentityProvider):
    """Fixed token -> user table, for tests and local development."""

    def __init__(self, users: Dict[str, CurrentUser] = None):
        self.users = dict(users or {})

    def get_current_user(self, token: Optional[str]) -> Optional[CurrentUser]:
        if not token:
            return None
        user = self.users.get(token)
        if user is None:
            raise IdentityError("Unknown token")
        return user


def create_token(
    user_id: str,
    role: Optional[str] = None,
    expires_in: int = 86400,
    secret: str = None,
    algorithm: str = None
) -> str:
    """Issue a token in the shape JwtIdentityProvider expects (development use)."""
    payload = {"sub": user_id, "exp": int(datetime.now(timezone.utc).timestamp()) + expires_in}
    if role:
        payload["role"] = role
    return pyjwt.encode(payload, secret or config.JWT_SECRET, algorithm=algorithm or config.JWT_ALGORITHM)
