"""JWT access token creation and validation (ES256).

Tokens are minted by the upstream auth service; this service only
verifies them against ``JWT_PUBLIC_KEY``.  Outside prod, when no key is
configured, an ephemeral key pair is generated on import and
``create_access_token`` signs with it so dev tooling and tests can mint
tokens the validator accepts.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from app.core.config import SETTINGS, Settings

ALGORITHM = "ES256"
AUDIENCE = "progress-service"
ACCESS_TOKEN_TTL_MIN = 15

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------


def load_keys(
    settings: Settings,
) -> tuple[ec.EllipticCurvePrivateKey | None, ec.EllipticCurvePublicKey]:
    """Return ``(signing_key, verification_key)`` for the given settings.

    A configured public key has no signing half.  Without one, dev and
    test get an ephemeral pair; any other environment is refused.
    """
    if settings.jwt_public_key:
        key = serialization.load_pem_public_key(settings.jwt_public_key.encode())
        if not isinstance(key, ec.EllipticCurvePublicKey):
            raise ValueError("JWT_PUBLIC_KEY must be an EC public key for ES256")
        return None, key
    if not (settings.is_dev or settings.is_test):
        raise RuntimeError("JWT_PUBLIC_KEY is required outside dev and test")
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key, private_key.public_key()


_private_key, _public_key = load_keys(SETTINGS)
ISSUER = SETTINGS.jwt_issuer


def create_access_token(
    *,
    sub: str,
    scope: str = "",
    roles: list[str] | None = None,
) -> str:
    """Build and sign a JWT access token.

    Claims: sub, iss, aud, exp, iat, jti, scope, roles.
    Only available with the dev/test ephemeral key.
    """
    if _private_key is None:
        raise RuntimeError("no signing key: tokens come from the auth service")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "scope": scope,
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins algorithm to ES256 to prevent alg:none and alg-switching attacks.
    Validates exp, iss, and aud automatically via PyJWT options.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
