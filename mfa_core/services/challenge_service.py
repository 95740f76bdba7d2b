"""
Challenge lifecycle: issue a time-boxed, single-use challenge against a
factor and consume it with a submitted code.

State machine::

    pending --valid code--------> consumed
    pending --invalid code------> pending   (until challenge_max_attempts)
    pending --ttl elapsed-------> expired   (implicit, checked on verify)
    pending --factor unenrolled-> deleted
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from mfa_core.core.config import get_settings
from mfa_core.core.errors import MfaErrorCode, Result
from mfa_core.core.time import ensure_aware, utcnow
from mfa_core.core.totp import TotpFormatError
from mfa_core.models import Factor, FactorStatus, MfaChallenge, MfaEventType
from .factor_kinds import FactorVerification, get_factor_kind
from .factor_service import get_factor, mark_verified
from .mfa_event_service import log_mfa_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyOutcome:
    factor_id: str
    challenge_id: str
    user_id: str
    factor_type: str
    accepted_step: int
    verified_at: datetime
    # true when this verification moved the factor from pending to verified
    factor_newly_verified: bool


def purge_expired_challenges(db: Session, now: datetime | None = None) -> int:
    """Delete challenges that expired more than ``challenge_retention_minutes`` ago."""
    settings = get_settings()
    cutoff = (now or utcnow()) - timedelta(minutes=settings.challenge_retention_minutes)
    deleted = (
        db.query(MfaChallenge)
        .filter(MfaChallenge.expires_at_utc < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.debug(f"Purged {deleted} expired challenges")
    return deleted


def create_challenge(
    db: Session,
    factor_id: str,
    user_id: str | None = None,
    now: datetime | None = None,
) -> Result[MfaChallenge]:
    settings = get_settings()
    now = now or utcnow()

    factor = get_factor(db, factor_id, user_id=user_id)
    if not factor:
        return Result.failure(MfaErrorCode.NOT_FOUND, "Factor not found")
    if factor.status == FactorStatus.DISABLED:
        return Result.failure(MfaErrorCode.DISABLED, "Factor is disabled; enroll a new one")

    purge_expired_challenges(db, now)

    get_factor_kind(factor.factor_type).generate_challenge_material(factor)
    challenge = MfaChallenge(
        factor_id=factor.id,
        created_at_utc=now,
        expires_at_utc=now + timedelta(minutes=settings.challenge_ttl_minutes),
        consumed=False,
        failed_attempts=0,
    )
    db.add(challenge)
    db.commit()
    db.refresh(challenge)

    log_mfa_event(
        db, MfaEventType.CHALLENGED, True, user_id=factor.user_id, factor_id=factor.id,
        challenge_id=challenge.id, now=now,
    )
    return Result.success(challenge)


def _fail(
    db: Session,
    code: MfaErrorCode,
    message: str,
    user_id: Optional[str],
    factor_id: Optional[str],
    challenge_id: str,
    now: datetime,
) -> Result[VerifyOutcome]:
    log_mfa_event(
        db,
        MfaEventType.VERIFY_FAILED,
        False,
        user_id=user_id,
        factor_id=factor_id,
        challenge_id=challenge_id,
        error_code=code.value,
        now=now,
    )
    logger.info(f"Verification failed for challenge {challenge_id}: {code.value}")
    return Result.failure(code, message)


def verify_challenge(
    db: Session,
    factor_id: str,
    challenge_id: str,
    code: str,
    user_id: str | None = None,
    now: datetime | None = None,
) -> Result[VerifyOutcome]:
    """
    Check ``code`` against a challenge and consume it on success.

    Every code check first takes one attempt slot with a conditional update,
    so concurrent requests cannot check more than ``challenge_max_attempts``
    codes against one challenge. A successful check hands its slot back.

    Raises:
        ValueError: if the factor secret cannot be decrypted with the
            configured key; that is a deployment fault, not a user error
    """
    settings = get_settings()
    now = now or utcnow()

    factor = get_factor(db, factor_id, user_id=user_id)
    challenge = db.query(MfaChallenge).populate_existing().filter(MfaChallenge.id == challenge_id).first()
    owner = factor.user_id if factor else None
    factor_ref = factor.id if factor else None
    if not factor or not challenge or challenge.factor_id != factor.id:
        return _fail(db, MfaErrorCode.NOT_FOUND, "Challenge not found for this factor", owner, factor_ref, challenge_id, now)
    if factor.status == FactorStatus.DISABLED:
        return _fail(db, MfaErrorCode.DISABLED, "Factor is disabled", owner, factor_ref, challenge_id, now)
    if now > ensure_aware(challenge.expires_at_utc):
        return _fail(db, MfaErrorCode.EXPIRED, "Challenge expired; request a new one", owner, factor_ref, challenge_id, now)
    if challenge.consumed:
        return _fail(db, MfaErrorCode.ALREADY_CONSUMED, "Challenge already used", owner, factor_ref, challenge_id, now)
    if challenge.failed_attempts >= settings.challenge_max_attempts:
        return _fail(
            db, MfaErrorCode.TOO_MANY_ATTEMPTS, "Too many invalid codes; request a new challenge",
            owner, factor_ref, challenge_id, now,
        )

    reserved = db.execute(
        update(MfaChallenge)
        .where(
            MfaChallenge.id == challenge.id,
            MfaChallenge.consumed.is_(False),
            MfaChallenge.failed_attempts < settings.challenge_max_attempts,
        )
        .values(failed_attempts=MfaChallenge.failed_attempts + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if reserved != 1:
        current = db.query(MfaChallenge).populate_existing().filter(MfaChallenge.id == challenge_id).first()
        if not current:
            return _fail(db, MfaErrorCode.NOT_FOUND, "Challenge not found for this factor", owner, factor_ref, challenge_id, now)
        if current.consumed:
            return _fail(db, MfaErrorCode.ALREADY_CONSUMED, "Challenge already used", owner, factor_ref, challenge_id, now)
        return _fail(
            db, MfaErrorCode.TOO_MANY_ATTEMPTS, "Too many invalid codes; request a new challenge",
            owner, factor_ref, challenge_id, now,
        )

    try:
        check = get_factor_kind(factor.factor_type).verify_response(factor, code, now)
    except TotpFormatError:
        check = FactorVerification(accepted=False)

    if not check.accepted:
        # the reserved slot stays counted
        message = "Code already used" if check.replayed else "Invalid code"
        return _fail(db, MfaErrorCode.INVALID_CODE, message, owner, factor_ref, challenge_id, now)

    step = check.accepted_step
    # Both conditional writes go in one transaction; losing either one means
    # a concurrent verify got there first.
    consumed = db.execute(
        update(MfaChallenge)
        .where(MfaChallenge.id == challenge.id, MfaChallenge.consumed.is_(False))
        .values(
            consumed=True,
            consumed_at_utc=now,
            accepted_step=step,
            failed_attempts=MfaChallenge.failed_attempts - 1,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    advanced = db.execute(
        update(Factor)
        .where(
            Factor.id == factor.id,
            Factor.status != FactorStatus.DISABLED,
            or_(Factor.last_accepted_step.is_(None), Factor.last_accepted_step < step),
        )
        .values(last_accepted_step=step, last_verified_at_utc=now, updated_at_utc=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if consumed != 1 or advanced != 1:
        db.rollback()
        return _fail(
            db, MfaErrorCode.ALREADY_CONSUMED, "Challenge or code already used", owner, factor_ref, challenge_id, now,
        )

    newly_verified = False
    if factor.status == FactorStatus.PENDING:
        # a racing challenge may have flipped it already; either way it ends verified
        newly_verified = mark_verified(db, factor.id, now=now, commit=False).ok
    db.commit()
    db.refresh(factor)
    db.refresh(challenge)

    logger.info(f"Verified challenge {challenge.id} for factor {factor.id} at step {step}")
    log_mfa_event(
        db, MfaEventType.VERIFIED, True, user_id=factor.user_id, factor_id=factor.id,
        challenge_id=challenge.id, now=now,
    )
    return Result.success(
        VerifyOutcome(
            factor_id=factor.id,
            challenge_id=challenge.id,
            user_id=factor.user_id,
            factor_type=factor.factor_type,
            accepted_step=step,
            verified_at=now,
            factor_newly_verified=newly_verified,
        )
    )


def challenge_and_verify(
    db: Session,
    factor_id: str,
    code: str,
    user_id: str | None = None,
    now: datetime | None = None,
) -> Result[VerifyOutcome]:
    """Issue a challenge and immediately answer it."""
    now = now or utcnow()
    issued = create_challenge(db, factor_id, user_id=user_id, now=now)
    if not issued.ok:
        return Result(error=issued.error)
    return verify_challenge(db, factor_id, issued.value.id, code, user_id=user_id, now=now)
