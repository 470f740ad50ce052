"""
Authentication for API callers.

Citizens and admins sign in through Firebase Authentication on the client;
requests carry the resulting ID token as `Authorization: Bearer <token>`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import auth as firebase_auth


class InvalidTokenError(Exception):
    pass


@dataclass
class AuthenticatedUser:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    claims: dict = field(default_factory=dict)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> AuthenticatedUser:
        ...


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens with the Admin SDK."""

    def __init__(self):
        try:
            firebase_admin.get_app()
        except ValueError:
            firebase_admin.initialize_app()

    def verify(self, token: str) -> AuthenticatedUser:
        try:
            decoded = firebase_auth.verify_id_token(token)
        except firebase_auth.ExpiredIdTokenError as exc:
            raise InvalidTokenError("Token expired") from exc
        except firebase_auth.RevokedIdTokenError as exc:
            raise InvalidTokenError("Token revoked") from exc
        except (ValueError, firebase_auth.InvalidIdTokenError) as exc:
            raise InvalidTokenError(str(exc)) from exc
        return AuthenticatedUser(
            uid=decoded["uid"],
            email=decoded.get("email"),
            display_name=decoded.get("name"),
            claims=decoded,
        )


class StaticTokenVerifier:
    """Token table for development and tests."""

    def __init__(self):
        self.tokens: dict[str, AuthenticatedUser] = {}

    def register(
        self, token: str, uid: str, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> None:
        self.tokens[token] = AuthenticatedUser(uid=uid, email=email, display_name=display_name)

    def reset(self) -> None:
        self.tokens.clear()

    def verify(self, token: str) -> AuthenticatedUser:
        user = self.tokens.get(token)
        if not user:
            raise InvalidTokenError("Unknown token")
        return user


def parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise InvalidTokenError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidTokenError("Invalid auth scheme")
    return token.strip()
