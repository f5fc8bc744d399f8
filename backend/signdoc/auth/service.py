from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from signdoc.auth.schemas import Caller, CallerKind
from signdoc.config import settings


class InvalidToken(Exception):
    pass


def create_access_token(user_id: Optional[str], role: str, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"role": role, "type": "access", "exp": expire}
    if user_id is not None:
        payload["sub"] = user_id
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def caller_from_token(token: str) -> Caller:
    """Decode a bearer token into a Caller.

    Admin tokens may omit ``sub`` (the original admin login was a single
    shared password); user tokens must carry it.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise InvalidToken("Invalid token") from exc

    if payload.get("type") != "access":
        raise InvalidToken("Invalid token type")

    role = payload.get("role")
    user_id = payload.get("sub")
    if role == CallerKind.admin.value:
        return Caller.admin(user_id)
    if role == CallerKind.user.value and user_id:
        return Caller.user(str(user_id))
    raise InvalidToken("Token does not identify an admin or user")
