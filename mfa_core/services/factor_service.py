import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mfa_core.core.config import get_settings
from mfa_core.core.encryption import encrypt_secret
from mfa_core.core.errors import MfaErrorCode, Result
from mfa_core.core.time import utcnow
from mfa_core.models import Factor, FactorStatus, MfaChallenge, MfaEventType
from .factor_kinds import get_factor_kind
from .mfa_event_service import log_mfa_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Enrollment:
    """Enrollment response; the only place a factor secret is ever returned."""
    factor: Factor
    secret: str
    uri: str


@dataclass(frozen=True)
class FactorSummary:
    id: str
    friendly_name: Optional[str]
    factor_type: str
    status: FactorStatus
    created_at_utc: datetime
    updated_at_utc: datetime


def _summary(factor: Factor) -> FactorSummary:
    return FactorSummary(
        id=factor.id,
        friendly_name=factor.friendly_name,
        factor_type=factor.factor_type,
        status=factor.status,
        created_at_utc=factor.created_at_utc,
        updated_at_utc=factor.updated_at_utc,
    )


def get_factor(db: Session, factor_id: str, user_id: str | None = None) -> Factor | None:
    query = db.query(Factor).populate_existing().filter(Factor.id == factor_id)
    if user_id is not None:
        query = query.filter(Factor.user_id == user_id)
    return query.first()


def enroll_factor(
    db: Session,
    user_id: str,
    factor_type: str = "totp",
    friendly_name: str | None = None,
    account_label: str | None = None,
    issuer: str | None = None,
    now: datetime | None = None,
) -> Result[Enrollment]:
    """
    Create a pending factor and hand back its secret and provisioning URI.

    Raises:
        UnsupportedFactorType: if no factor kind is registered for ``factor_type``.
            The API schema only admits registered types, so this is a caller bug
            rather than a user-facing failure.
    """
    kind = get_factor_kind(factor_type)
    settings = get_settings()
    now = now or utcnow()

    pending = (
        db.query(Factor)
        .filter(
            Factor.user_id == user_id,
            Factor.factor_type == factor_type,
            Factor.status == FactorStatus.PENDING,
        )
        .first()
    )
    if pending:
        return Result.failure(
            MfaErrorCode.CONFLICT,
            "An unverified factor of this type already exists; verify or unenroll it first",
        )

    if friendly_name:
        taken = (
            db.query(Factor)
            .filter(Factor.user_id == user_id, Factor.friendly_name == friendly_name)
            .first()
        )
        if taken:
            return Result.failure(MfaErrorCode.CONFLICT, "A factor with this friendly name already exists")

    existing = db.query(func.count(Factor.id)).filter(Factor.user_id == user_id).scalar()
    if existing >= settings.max_enrolled_factors:
        return Result.failure(MfaErrorCode.CONFLICT, "Maximum number of enrolled factors reached")

    secret = kind.new_secret()
    material = kind.generate_enrollment_material(
        secret,
        account_label or friendly_name or user_id,
        issuer or settings.totp_issuer,
    )

    factor = Factor(
        user_id=user_id,
        factor_type=factor_type,
        secret_encrypted=encrypt_secret(secret),
        friendly_name=friendly_name,
        status=FactorStatus.PENDING,
        created_at_utc=now,
        updated_at_utc=now,
    )
    db.add(factor)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent enrollment took the pending slot or the friendly name
        db.rollback()
        logger.info(f"Concurrent {factor_type} enrollment for user {user_id} rejected")
        return Result.failure(MfaErrorCode.CONFLICT, "A conflicting factor was enrolled at the same time; list factors and retry")
    db.refresh(factor)

    logger.info(f"Enrolled {factor_type} factor {factor.id} for user {user_id}")
    log_mfa_event(db, MfaEventType.ENROLLED, True, user_id=user_id, factor_id=factor.id, now=now)
    return Result.success(Enrollment(factor=factor, secret=material["secret"], uri=material["uri"]))


def list_factors(db: Session, user_id: str) -> List[FactorSummary]:
    factors = (
        db.query(Factor)
        .filter(Factor.user_id == user_id)
        .order_by(Factor.created_at_utc.asc(), Factor.id.asc())
        .all()
    )
    return [_summary(f) for f in factors]


def count_verified_factors(db: Session, user_id: str) -> int:
    return (
        db.query(func.count(Factor.id))
        .filter(Factor.user_id == user_id, Factor.status == FactorStatus.VERIFIED)
        .scalar()
    )


def mark_verified(db: Session, factor_id: str, now: datetime | None = None, commit: bool = True) -> Result[Factor]:
    """
    Move a factor from pending to verified.

    The transition is a conditional update on ``status = pending`` so that two
    racing verifications can only ever flip it once. With ``commit=False`` the
    caller owns the transaction.
    """
    now = now or utcnow()
    flipped = db.execute(
        update(Factor)
        .where(Factor.id == factor_id, Factor.status == FactorStatus.PENDING)
        .values(status=FactorStatus.VERIFIED, last_verified_at_utc=now, updated_at_utc=now)
        .execution_options(synchronize_session=False)
    ).rowcount

    if flipped != 1:
        factor = get_factor(db, factor_id)
        if not factor:
            return Result.failure(MfaErrorCode.NOT_FOUND, "Factor not found")
        if factor.status == FactorStatus.DISABLED:
            return Result.failure(MfaErrorCode.DISABLED, "Factor is disabled")
        return Result.failure(MfaErrorCode.CONFLICT, "Factor is already verified")

    if commit:
        db.commit()
    return Result.success(get_factor(db, factor_id))


def disable_factor(db: Session, factor_id: str, now: datetime | None = None) -> Result[Factor]:
    now = now or utcnow()
    factor = get_factor(db, factor_id)
    if not factor:
        return Result.failure(MfaErrorCode.NOT_FOUND, "Factor not found")

    factor.status = FactorStatus.DISABLED
    factor.updated_at_utc = now
    db.add(factor)
    db.commit()
    db.refresh(factor)

    logger.warning(f"Disabled factor {factor.id} for user {factor.user_id}")
    log_mfa_event(db, MfaEventType.DISABLED, True, user_id=factor.user_id, factor_id=factor.id, now=now)
    return Result.success(factor)


def unenroll(db: Session, factor_id: str, user_id: str | None = None) -> Result[bool]:
    """
    Delete a factor and every challenge issued against it.

    Sessions already issued are left alone; their ``aal`` claim only changes
    when they are reissued.
    """
    factor = get_factor(db, factor_id, user_id=user_id)
    if not factor:
        return Result.failure(MfaErrorCode.NOT_FOUND, "Factor not found")

    owner = factor.user_id
    db.query(MfaChallenge).filter(MfaChallenge.factor_id == factor.id).delete(synchronize_session=False)
    db.delete(factor)
    db.commit()

    logger.info(f"Unenrolled factor {factor_id} for user {owner}")
    log_mfa_event(db, MfaEventType.UNENROLLED, True, user_id=owner, factor_id=factor_id)
    return Result.success(True)
