import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketchat.schemas.user import UserIdentity
from marketchat.services.context import ChatContext
from marketchat.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


def get_chat_context(request: Request) -> ChatContext:
    return request.app.state.chat


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    context: ChatContext = Depends(get_chat_context),
) -> UserIdentity:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(
            credentials.credentials, context.settings.jwt_secret, context.settings.jwt_algorithm
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not context.identifiers.is_valid(payload["sub"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    user = UserIdentity(
        id=context.identifiers.require(payload["sub"], "sub"),
        email=payload.get("email"),
        name=payload.get("name"),
    )
    # presence writes only land on existing profiles
    await context.presence.ensure_profile(user.id, user.name)
    return user
