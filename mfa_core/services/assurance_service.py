"""
Authenticator assurance level (AAL) of a session.

``current`` is whatever the presented credential says; ``next`` is what a
freshly issued credential would carry given the user's verified factors.
The two are kept apart on purpose: after the last verified factor is
unenrolled ``next`` drops to aal1 at once while ``current`` on an existing
credential stays aal2 until that credential is reissued.
"""
import enum
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from .factor_service import count_verified_factors

AAL_CLAIM = "aal"


class AAL(str, enum.Enum):
    AAL1 = "aal1"
    AAL2 = "aal2"


@dataclass(frozen=True)
class AssuranceLevel:
    current: AAL
    next: AAL


def parse_level(claim: Any) -> AAL:
    """Absent or unrecognised claims count as aal1."""
    if isinstance(claim, AAL):
        return claim
    if isinstance(claim, str):
        try:
            return AAL(claim)
        except ValueError:
            return AAL.AAL1
    return AAL.AAL1


def evaluate(current_level_claim: Any, verified_factor_count: int) -> AssuranceLevel:
    return AssuranceLevel(
        current=parse_level(current_level_claim),
        next=AAL.AAL2 if verified_factor_count > 0 else AAL.AAL1,
    )


def get_assurance_level(db: Session, claims: Mapping[str, Any]) -> AssuranceLevel:
    user_id = claims.get("sub")
    count = count_verified_factors(db, user_id) if user_id else 0
    return evaluate(claims.get(AAL_CLAIM), count)
