"""JWT verification for tokens issued by the external auth service.

Token claims we rely on:
  - sub:    user ID (matches profiles.id)
  - email:  user email
  - exp:    expiry timestamp

`create_access_token` mints a token with the same shape; it is used by the
test-suite and local development, never by the request path.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from factorchain.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError:
        return {}
