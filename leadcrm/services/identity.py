"""Bearer token -> Principal.

Authentication belongs to the external identity provider; this service
only verifies the provider's signature and reads two claims.
"""

from __future__ import annotations

import jwt

from leadcrm.core.config import SETTINGS
from leadcrm.models.principal import Principal

ALGORITHM = "HS256"


def decode_identity_token(token: str) -> dict:
    """Verify signature, audience and expiry; return the payload.

    Pins the algorithm to prevent alg:none and alg-switching attacks.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        SETTINGS.identity_jwt_secret,
        algorithms=[ALGORITHM],
        audience=SETTINGS.identity_audience,
        options={"require": ["sub", "email", "exp"]},
    )


def principal_from_token(token: str) -> Principal:
    claims = decode_identity_token(token)
    sub = claims["sub"]
    email = claims["email"]
    if not isinstance(sub, str) or not sub or not isinstance(email, str):
        raise jwt.InvalidTokenError("sub and email must be non-empty strings")
    return Principal.of(sub, email)
