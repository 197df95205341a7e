"""
Identity store tables read by the vulnerability scanner.

These belong to the surrounding identity system; riskwatch only reads them.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from riskwatch.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    organization_id = Column(String, nullable=True, index=True)
    # 0 (trivial) .. 4 (strong), computed by the identity system at password set time
    password_strength = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    mfa_devices = relationship("MfaDevice", back_populates="user", cascade="all, delete-orphan")
    security_roles = relationship("UserSecurityRole", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")


class MfaDevice(Base):
    __tablename__ = "mfa_devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    verified = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="mfa_devices")


class UserSecurityRole(Base):
    __tablename__ = "user_security_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    role_id = Column(String, nullable=False)

    user = relationship("User", back_populates="security_roles")


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    last_active_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="sessions")


class EncryptedField(Base):
    """Field-level encryption configuration for one model field."""
    __tablename__ = "encrypted_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=True, index=True)
    model_name = Column(String, nullable=False)
    field_name = Column(String, nullable=False)
