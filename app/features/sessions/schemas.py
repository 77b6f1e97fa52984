"""
Pydantic schemas for login and session state.
"""
from typing import Any, Dict

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    # Plain string: malformed addresses are still recorded as failed logins
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds of inactivity before the session expires")
    principal: Dict[str, Any]


class SessionStatus(BaseModel):
    session_id: str
    authenticated: bool = True
    remaining_seconds: int
    timeout_seconds: int
