"""
Service for MFA audit logging
"""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from mfa_core.core.time import utcnow
from mfa_core.models import MfaEvent, MfaEventType


def log_mfa_event(
    db: Session,
    event_type: MfaEventType,
    success: bool,
    user_id: Optional[str] = None,
    factor_id: Optional[str] = None,
    challenge_id: Optional[str] = None,
    error_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MfaEvent:
    """
    Record an MFA operation in the audit trail.

    Args:
        db: Database session
        event_type: What happened
        success: Whether the operation succeeded
        user_id: Owner of the factor
        factor_id: Factor involved
        challenge_id: Challenge involved, for challenge/verify events
        error_code: ``MfaErrorCode`` value on failure
        now: Event time (defaults to the current time)

    Returns:
        Created MfaEvent entry
    """
    entry = MfaEvent(
        event_type=event_type,
        success=success,
        user_id=user_id,
        factor_id=factor_id,
        challenge_id=challenge_id,
        error_code=error_code,
        timestamp_utc=now or utcnow(),
    )
    db.add(entry)
    db.commit()
    return entry


def get_mfa_events(
    db: Session,
    user_id: Optional[str] = None,
    factor_id: Optional[str] = None,
    event_type: Optional[MfaEventType] = None,
    limit: int = 100,
) -> List[MfaEvent]:
    """Most recent events first, optionally filtered."""
    query = db.query(MfaEvent)

    if user_id:
        query = query.filter(MfaEvent.user_id == user_id)

    if factor_id:
        query = query.filter(MfaEvent.factor_id == factor_id)

    if event_type:
        query = query.filter(MfaEvent.event_type == event_type)

    return query.order_by(MfaEvent.timestamp_utc.desc()).limit(limit).all()


def count_failed_attempts(
    db: Session,
    factor_id: str,
    minutes: int = 15,
    now: Optional[datetime] = None,
) -> int:
    """
    Count failed verifications against a factor in the last N minutes.

    This is the signal an external attempt-rate limiter keys on.
    """
    cutoff_time = (now or utcnow()) - timedelta(minutes=minutes)

    return db.query(MfaEvent).filter(
        MfaEvent.factor_id == factor_id,
        MfaEvent.event_type == MfaEventType.VERIFY_FAILED,
        MfaEvent.timestamp_utc >= cutoff_time,
    ).count()


def cleanup_old_events(db: Session, days_to_keep: int = 90) -> int:
    """
    Delete events older than specified days.

    Returns:
        Number of deleted records
    """
    cutoff_date = utcnow() - timedelta(days=days_to_keep)

    deleted = db.query(MfaEvent).filter(MfaEvent.timestamp_utc < cutoff_date).delete()
    db.commit()

    return deleted
