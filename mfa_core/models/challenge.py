import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from mfa_core.core.time import utcnow
from mfa_core.db.base import Base


class MfaChallenge(Base):
    __tablename__ = "mfa_challenges"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    factor_id = Column(String(36), ForeignKey("mfa_factors.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at_utc = Column(DateTime(timezone=True), nullable=False, index=True)
    consumed = Column(Boolean, default=False, nullable=False)
    consumed_at_utc = Column(DateTime(timezone=True), nullable=True)
    accepted_step = Column(BigInteger, nullable=True)
    failed_attempts = Column(Integer, default=0, nullable=False)

    factor = relationship("Factor", back_populates="challenges")
