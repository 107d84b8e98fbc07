from typing import Optional

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def current_user_id(request: Request, authorization: Optional[str] = Header(None)) -> int:
    """Numeric user id from an optional bearer token; 0 for guests."""
    if not authorization:
        return 0

    settings = request.app.state.settings
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not settings.jwt_secret:
            raise ValueError("unsupported authorization")
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return int(claims["sub"])
    except (ValueError, KeyError, TypeError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
