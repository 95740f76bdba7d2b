import enum
import uuid

from sqlalchemy import BigInteger, Column, DateTime, Enum, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import relationship

from mfa_core.core.time import utcnow
from mfa_core.db.base import Base


class FactorStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DISABLED = "disabled"


class Factor(Base):
    __tablename__ = "mfa_factors"
    __table_args__ = (
        UniqueConstraint("user_id", "friendly_name", name="uq_mfa_factors_user_friendly_name"),
        Index("ix_mfa_factors_user_status", "user_id", "status"),
        # at most one unverified factor of each type per user
        Index(
            "uq_mfa_factors_user_type_pending",
            "user_id",
            "factor_type",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    factor_type = Column(String(16), nullable=False, default="totp")
    # Fernet token of the base32 secret; written once at enrollment
    secret_encrypted = Column(Text, nullable=False)
    friendly_name = Column(String(255), nullable=True)
    status = Column(
        Enum(FactorStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        default=FactorStatus.PENDING,
        nullable=False,
    )
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_verified_at_utc = Column(DateTime(timezone=True), nullable=True)
    last_accepted_step = Column(BigInteger, nullable=True)

    challenges = relationship(
        "MfaChallenge",
        back_populates="factor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
