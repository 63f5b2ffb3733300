"""Caller identity carried by access tokens.

Tokens are issued elsewhere; this module only verifies them (HS256, PyJWT)
and exposes who is calling.
"""

from dataclasses import dataclass
from typing import Optional

import jwt

from ..services.errors import UnauthorizedError


ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


@dataclass(frozen=True)
class Caller:
    id: str
    role: str = ROLE_USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_access_token(token: str, secret: str) -> Caller:
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        raise UnauthorizedError("Invalid or expired token") from None
    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        raise UnauthorizedError("Token does not identify a user")
    role = str(claims.get("role") or ROLE_USER).upper()
    return Caller(id=str(user_id), role=role, email=claims.get("email"))


def caller_from_header(header: Optional[str], secret: str) -> Caller:
    if not header:
        raise UnauthorizedError("Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise UnauthorizedError("Invalid Authorization header")
    return decode_access_token(token.strip(), secret)
