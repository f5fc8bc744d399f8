from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from signdoc.auth.schemas import Caller
from signdoc.auth.service import InvalidToken, caller_from_token

security = HTTPBearer(auto_error=False)


async def get_caller(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Caller:
    # No token means an anonymous link-holder, who may still view and sign.
    if credentials is None:
        return Caller.anonymous()
    try:
        return caller_from_token(credentials.credentials)
    except InvalidToken as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


async def require_authenticated(caller: Annotated[Caller, Depends(get_caller)]) -> Caller:
    if not caller.is_authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return caller
