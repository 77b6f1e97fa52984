"""
Bearer tokens.

A token only names a user and a server-side session; whether it is still
usable is decided by the session row.
"""
import jwt

from app.core import config
from app.core.errors import AuthenticationFailed
from app.utils import utcnow


def issue_token(user_id: str, session_id: str) -> str:
    payload = {"sub": user_id, "sid": session_id, "iat": utcnow()}
    return jwt.encode(payload, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> tuple[str, str]:
    """
    Verify the signature and return (user_id, session_id).

    Raises:
        AuthenticationFailed: token is malformed, forged or lacks its claims
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthenticationFailed("Invalid authentication token")

    user_id = payload.get("sub")
    session_id = payload.get("sid")
    if not user_id or not session_id:
        raise AuthenticationFailed("Invalid token payload")
    return user_id, session_id
