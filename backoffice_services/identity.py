"""
backoffice_services.identity -- JWT identity provider.

Responsibility:
    Issues and verifies HS256 bearer tokens carrying the acting user's code
    and display name, and turns a verified token into an ``Actor``.

Architecture position:
    Services layer.  Built on PyJWT.  Consumed by ``BackofficeGateway``;
    the workflow engine itself only ever sees ``Actor`` values.

Invariants enforced:
    - Expiry is checked against the injected Clock, not the wall clock,
      so tests can move time.
    - Tokens must carry ``user_code``, ``name``, ``iat`` and ``exp`` and
      the configured issuer.

Failure modes:
    - UnauthorizedError on a missing, malformed, wrongly signed or
      wrong-issuer token.
    - TokenExpiredError once ``now > exp + leeway``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import jwt

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.dtos import Actor
from backoffice_kernel.exceptions import TokenExpiredError, UnauthorizedError
from backoffice_kernel.logging_config import get_logger

logger = get_logger("services.identity")

_REQUIRED_CLAIMS = ["user_code", "name", "iat", "exp"]


def extract_bearer_token(header: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        raise UnauthorizedError("Missing Authorization header")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Authorization header must use the Bearer scheme")
    return token.strip()


class JWTIdentityProvider:
    """Issue and verify identity tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "cdi-fe-app",
        expires_days: int = 7,
        clock: Clock | None = None,
        leeway_seconds: int = 0,
    ):
        if not secret:
            raise ValueError("JWT secret must be non-empty")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._expires = timedelta(days=expires_days)
        self._clock = clock or SystemClock()
        self._leeway = timedelta(seconds=leeway_seconds)

    @classmethod
    def from_config(cls, config, clock: Clock | None = None) -> JWTIdentityProvider:
        identity = config.identity
        return cls(
            secret=identity.secret,
            algorithm=identity.algorithm,
            issuer=identity.issuer,
            expires_days=identity.expires_days,
            clock=clock,
            leeway_seconds=identity.leeway_seconds,
        )

    def issue(
        self,
        actor: Actor,
        email: str | None = None,
        department: str | None = None,
        position: str | None = None,
    ) -> str:
        now = self._clock.now()
        to_encode: dict[str, Any] = {
            "sub": actor.code,
            "user_code": actor.code,
            "name": actor.name,
            "email": email,
            "department": department,
            "position": position,
            "iss": self._issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + self._expires).timestamp()),
        }
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def verify(self, token: str | None) -> Actor:
        if not token:
            raise UnauthorizedError("Missing token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidTokenError as exc:
            logger.info("token_rejected", extra={"reason": type(exc).__name__})
            raise UnauthorizedError("Invalid token") from exc

        try:
            expires_at = int(payload["exp"])
        except (TypeError, ValueError):
            raise UnauthorizedError("Invalid token") from None
        if self._clock.now().timestamp() > expires_at + self._leeway.total_seconds():
            logger.info("token_rejected", extra={"reason": "expired"})
            raise TokenExpiredError()

        code = payload.get("user_code")
        if not isinstance(code, str) or not code:
            raise UnauthorizedError("Token has no user code")
        name = payload.get("name")
        return Actor(code=code, name=name if isinstance(name, str) else code)
