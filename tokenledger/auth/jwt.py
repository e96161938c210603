"""Bearer token verification.

Tokens are issued by the platform's identity service and signed with the
shared ``SECRET_KEY``.  Required claims: ``sub`` (user id), ``tenant_id``,
``role``; ``email`` is optional.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from tokenledger.core.config import settings

REQUIRED_CLAIMS = ("sub", "tenant_id", "role")


def decode_access_token(token: str) -> dict:
    """
    Verify an HS256 JWT and return its claims.

    Raises JWTError on a bad signature, an expired token or missing claims.
    """
    payload = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"verify_aud": False, "verify_exp": True},
    )
    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        raise JWTError(f"Token missing claims: {', '.join(missing)}")
    return payload


def create_access_token(claims: dict, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a token for service-to-service calls and tests."""
    payload = {**claims, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
