"""
Identity resolution. Bearer JWTs come from the external identity provider; we only verify
them and take the subject claim as the user id. The id is then passed explicitly into
every service call.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from vetchat.config import get_settings
from vetchat.errors import Unauthenticated
from vetchat.schemas.user import TokenPayload

security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Mint an HS256 token for local development and tests (production tokens come from the provider)."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": user_id,
        "exp": expire,
        "type": "access",
    }
    if settings.auth_jwt_issuer:
        payload["iss"] = settings.auth_jwt_issuer
    if settings.auth_jwt_audience:
        payload["aud"] = settings.auth_jwt_audience
    return jwt.encode(payload, settings.auth_jwt_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    settings = get_settings()
    kwargs = {}
    if settings.auth_jwt_issuer:
        kwargs["issuer"] = settings.auth_jwt_issuer
    if settings.auth_jwt_audience:
        kwargs["audience"] = settings.auth_jwt_audience
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_key,
            algorithms=[settings.auth_jwt_algorithm],
            options={"verify_aud": bool(settings.auth_jwt_audience)},
            **kwargs,
        )
        if not payload.get("sub"):
            return None
        return TokenPayload(
            sub=payload["sub"],
            exp=payload["exp"],
            type=payload.get("type", "access"),
        )
    except (JWTError, KeyError):
        return None


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    if not credentials:
        raise Unauthenticated("Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload or payload.type != "access":
        raise Unauthenticated("Invalid or expired token")
    return payload.sub


# ---- Upload URLs: short-lived token scoped to one user's direct upload ----


def create_upload_token(user_id: str) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.upload_token_expire_minutes)
    payload = {"sub": user_id, "exp": expire, "type": "upload"}
    return jwt.encode(payload, settings.upload_token_secret, algorithm="HS256")


def decode_upload_token(token: str) -> str | None:
    """Returns the uploading user's id, or None if the token is invalid or expired."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.upload_token_secret, algorithms=["HS256"])
    except JWTError:
        return None
    if payload.get("type") != "upload" or not payload.get("sub"):
        return None
    return payload["sub"]
