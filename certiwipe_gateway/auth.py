from typing import Optional

import jwt
from fastapi import Depends, Request

from .config import Settings, get_settings
from .errors import AuthError
from .models import CallerIdentity


def verify_token(token: str, settings: Settings) -> CallerIdentity:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        raise AuthError("Invalid or expired token") from e
    user_id = claims.get("user_id")
    if not user_id:
        raise AuthError("Invalid or expired token")
    return CallerIdentity(user_id=str(user_id), username=claims.get("username"), claims=claims)


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


def current_caller(request: Request, settings: Settings = Depends(get_settings)) -> CallerIdentity:
    token = bearer_token(request)
    if not token:
        raise AuthError("Missing token")
    return verify_token(token, settings)
