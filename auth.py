"""
Authentication for the Journal API.

Users sign in with an external identity provider, which issues JWTs. The API
only verifies them: either with a shared HS256 secret or, when AUTH_JWKS_URL
is set, with the provider's RS256 signing keys. The `sub` claim is the user id
that owns trades and the customer profile.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from customers import get_or_create_customer
from database import get_db
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Token missing, malformed, expired or signed by someone else."""


@lru_cache()
def _jwks_client(url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(url)


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Verify a session JWT and return its claims.

    Args:
        token: Raw JWT from the Authorization header
        settings: Provides the verification key and expected iss/aud

    Raises:
        AuthError: If the token cannot be trusted
    """
    options = {"require": ["sub", "exp"], "verify_aud": bool(settings.auth_audience)}
    try:
        if settings.auth_jwks_url:
            signing_key = _jwks_client(settings.auth_jwks_url).get_signing_key_from_jwt(token)
            key, algorithms = signing_key.key, ["RS256"]
        elif settings.auth_jwt_secret:
            key, algorithms = settings.auth_jwt_secret, ["HS256"]
        else:
            raise AuthError("Authentication is not configured")

        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.PyJWKClientError as e:
        raise AuthError(f"Signing key unavailable: {e}")
    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid token: {e}")


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        claims = decode_token(credentials.credentials, settings)
    except AuthError as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=401, detail="Not authenticated")
    return str(claims["sub"])


def get_current_customer(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    """The caller's customer profile, provisioned on the free tier on first use."""
    return get_or_create_customer(db, user_id)


def require_pro(customer: Dict[str, Any] = Depends(get_current_customer)) -> Dict[str, Any]:
    if customer.get("membership") != "pro":
        raise HTTPException(status_code=402, detail="A pro membership is required for this feature")
    return customer
