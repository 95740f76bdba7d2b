"""
MFA audit trail model
"""
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, String
from mfa_core.core.time import utcnow
from mfa_core.db.base import Base


class MfaEventType(str, enum.Enum):
    """Types of MFA events"""
    ENROLLED = "Enrolled"
    CHALLENGED = "Challenged"
    VERIFIED = "Verified"
    VERIFY_FAILED = "VerifyFailed"
    UNENROLLED = "Unenrolled"
    DISABLED = "Disabled"


class MfaEvent(Base):
    """One row per MFA operation; failed verifies are what rate limiters key on"""
    __tablename__ = "mfa_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(Enum(MfaEventType, native_enum=False, length=16), nullable=False)
    user_id = Column(String(36), nullable=True, index=True)
    # no foreign keys: events outlive unenrolled factors
    factor_id = Column(String(36), nullable=True, index=True)
    challenge_id = Column(String(36), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_code = Column(String(32), nullable=True)
    timestamp_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
