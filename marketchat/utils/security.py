from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt


def create_access_token(
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    expires_in: timedelta = timedelta(hours=1),
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"sub": subject, "iat": now, "exp": now + expires_in}
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> Dict[str, Any]:
    # raises jwt.InvalidTokenError on bad signature, expiry or shape
    return jwt.decode(token, secret, algorithms=[algorithm], options={"require": ["sub", "exp"]})
