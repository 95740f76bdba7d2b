import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping

from sqlalchemy.orm import Session

from mfa_core.core import security
from mfa_core.core.config import get_settings
from mfa_core.core.time import epoch_seconds, utcnow
from .assurance_service import AAL, AAL_CLAIM, get_assurance_level

logger = logging.getLogger(__name__)

AMR_CLAIM = "amr"
# identity claims carried over from the previous credential
CARRIED_CLAIMS = ("sub", "email", "role", "session_id")


@dataclass(frozen=True)
class IssuedSession:
    token: str
    claims: Dict[str, Any]
    expires_at: datetime


def normalize_amr(value: Any) -> List[Dict[str, Any]]:
    """Keep only well-formed ``{method, timestamp}`` entries, in order."""
    if not isinstance(value, list):
        return []
    entries = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        method = item.get("method")
        timestamp = item.get("timestamp")
        if isinstance(method, str) and method and isinstance(timestamp, int) and not isinstance(timestamp, bool):
            entries.append({"method": method, "timestamp": timestamp})
    return entries


def build_session_claims(
    previous_claims: Mapping[str, Any],
    method: str | None,
    now: datetime,
    level: AAL,
) -> Dict[str, Any]:
    """
    Claim set for a new credential.

    The amr list is copied, never edited: with a ``method`` the new entry goes
    in front; without one (a plain refresh) the history is carried as is.
    """
    claims = {k: previous_claims[k] for k in CARRIED_CLAIMS if previous_claims.get(k) is not None}
    claims.setdefault("session_id", str(uuid.uuid4()))

    amr = normalize_amr(previous_claims.get(AMR_CLAIM))
    if method:
        amr = [{"method": method, "timestamp": epoch_seconds(now)}] + amr

    claims[AAL_CLAIM] = level.value
    claims[AMR_CLAIM] = amr
    return claims


def _encode(claims: Dict[str, Any], now: datetime) -> IssuedSession:
    settings = get_settings()
    token = security.create_session_token(claims, now=now)
    return IssuedSession(
        token=token,
        claims=claims,
        expires_at=now + timedelta(minutes=settings.session_token_exp_minutes),
    )


def issue_session(
    db: Session,
    previous_claims: Mapping[str, Any],
    method: str,
    now: datetime | None = None,
) -> IssuedSession:
    """
    Reissue the credential after a successful authentication step.

    The previous credential is not revoked; it stays valid until it expires.
    """
    now = now or utcnow()
    level = get_assurance_level(db, previous_claims)
    claims = build_session_claims(previous_claims, method, now, level.next)
    logger.info(f"Issued {level.next.value} session for user {claims.get('sub')} after {method}")
    return _encode(claims, now)


def refresh_session(
    db: Session,
    previous_claims: Mapping[str, Any],
    now: datetime | None = None,
) -> IssuedSession:
    """
    Reissue without a new authentication step.

    A refresh can keep or lower the level but never raise it: aal2 survives
    only while the user still has a verified factor.
    """
    now = now or utcnow()
    level = get_assurance_level(db, previous_claims)
    refreshed = AAL.AAL2 if level.current == AAL.AAL2 and level.next == AAL.AAL2 else AAL.AAL1
    if refreshed != level.current:
        logger.info(f"Session for user {previous_claims.get('sub')} downgraded to {refreshed.value}")
    claims = build_session_claims(previous_claims, None, now, refreshed)
    return _encode(claims, now)
