from datetime import datetime, timedelta
from typing import Any, Dict

import jwt

from .config import get_settings
from .time import utcnow

ALGORITHM = "HS256"
# claims owned by the encoder; never copied from a previous credential
REGISTERED_CLAIMS = ("iss", "iat", "exp", "nbf")


def create_token(payload: Dict[str, Any], expires_minutes: int, now: datetime | None = None) -> str:
    settings = get_settings()
    now = now or utcnow()
    expire = now + timedelta(minutes=expires_minutes)
    claims = {
        **{k: v for k, v in payload.items() if k not in REGISTERED_CLAIMS},
        "iss": settings.jwt_issuer,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        issuer=settings.jwt_issuer,
        algorithms=[ALGORITHM],
        options={"require": ["iss", "iat", "exp", "sub"]},
    )


def create_session_token(claims: Dict[str, Any], now: datetime | None = None) -> str:
    settings = get_settings()
    return create_token({**claims, "type": "access"}, settings.session_token_exp_minutes, now=now)
