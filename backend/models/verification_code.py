"""
Verification code rows issued against a contact destination.
Rows are never deleted: consumed and expired codes stay as history.
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from services.db import Base


class VerificationPurpose(str, enum.Enum):
    """Flow a verification code is scoped to."""
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"
    CONTACT_CHANGE = "contact_change"


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True, index=True)
    destination = Column(String(255), nullable=False)
    code = Column(String(12), nullable=False)
    purpose = Column(String(32), nullable=False)

    # Null when the destination is not tied to an account yet
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    consumed = Column(Boolean, default=False, nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    owner = relationship("User", back_populates="verification_codes")

    __table_args__ = (
        Index("ix_verification_codes_destination_issued", "destination", "issued_at"),
        Index("ix_verification_codes_lookup", "destination", "code", "purpose"),
    )

    def __repr__(self):
        return (
            f"<VerificationCode(destination='{self.destination}', purpose='{self.purpose}', "
            f"attempts={self.attempts}, consumed={self.consumed})>"
        )
