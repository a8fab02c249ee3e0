"""
Authenticated identity as exposed by the Auth Gateway
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthUser:
    uid: str
    email: Optional[str]
    email_verified: bool = False
    provider: str = "password"  # password, google
