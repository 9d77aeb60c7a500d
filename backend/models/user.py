from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from services.db import Base

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Contact method (E.164 phone number or secondary email), shared by at most
    # MAX_ACCOUNTS_PER_CONTACT accounts
    contact = Column(String(255), nullable=True, index=True)
    contact_verified = Column(Boolean, default=False, nullable=False)

    last_login_at = Column(DateTime(timezone=True), nullable=True)

    verification_codes = relationship("VerificationCode", back_populates="owner")
    login_events = relationship("LoginEvent", back_populates="user")

    def __repr__(self):
        return f"<User(email='{self.email}', active={self.is_active}, contact_verified={self.contact_verified})>"
