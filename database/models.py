"""
Database models for the lost & found system.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Text,
    ForeignKey, JSON, Index, TypeDecorator
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums - Must be defined before models that use them
# ============================================================================

class ReportType(str, enum.Enum):
    """What the submitter is reporting."""
    LOST = "lost"
    FOUND = "found"


class ReportStatus(str, enum.Enum):
    """Report lifecycle status. approved and rejected are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FoundItemStatus(str, enum.Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class LostItemStatus(str, enum.Enum):
    MISSING = "missing"
    FOUND = "found"
    EXPIRED = "expired"


class OtpPurpose(str, enum.Enum):
    """What a pending one-time code unlocks."""
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"


# ============================================================================
# Models
# ============================================================================

class User(Base):
    """User model for authentication. Role is implied by the email domain."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)  # Stored lowercase
    hashed_password = Column(String(255), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    # Relationships
    pending_verification = relationship(
        "PendingVerification", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    reports = relationship("ReportedItem", back_populates="submitter")

    __table_args__ = (
        Index('idx_user_email', 'email'),
    )


class PendingVerification(Base):
    """
    The single outstanding one-time code for a user.

    Replaces separate verification / reset / change-confirmation columns:
    issuing a new code for any purpose overwrites the previous one.
    """
    __tablename__ = "pending_verifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    purpose = Column(EnumValue(OtpPurpose, 32), nullable=False)
    code_hash = Column(String(64), nullable=False)  # sha256 hex of the OTP
    expires_at = Column(DateTime, nullable=False)
    staged_password_hash = Column(String(255), nullable=True)  # Only for password_change
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="pending_verification")

    __table_args__ = (
        Index('idx_pending_expires', 'expires_at'),
    )


class ReportedItem(Base):
    """
    A user-submitted lost/found report awaiting admin disposition.
    Never deleted; kept as the audit trail of approvals and rejections.
    """
    __tablename__ = "reported_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False)
    contact = Column(String(255), nullable=False)
    date_reported = Column(Date, nullable=False)
    # Plain string, not EnumValue: a row with an unknown type must stay readable
    # so approval can reject it explicitly.
    type = Column(String(20), nullable=False)
    status = Column(EnumValue(ReportStatus, 20), default=ReportStatus.PENDING, nullable=False)
    submitter_email = Column(String(255), nullable=False)
    submitter_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    submitter = relationship("User", back_populates="reports")

    __table_args__ = (
        Index('idx_report_status', 'status'),
        Index('idx_report_submitter', 'submitter_id'),
    )


class FoundItem(Base):
    """An item handed in to the lost & found office."""
    __tablename__ = "found_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False)
    contact = Column(String(255), nullable=False)
    date_found = Column(Date, nullable=False)
    status = Column(EnumValue(FoundItemStatus, 20), default=FoundItemStatus.AVAILABLE, nullable=False)
    source_report_id = Column(Integer, ForeignKey("reported_items.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_found_status', 'status'),
    )


class LostItem(Base):
    """An item somebody is looking for."""
    __tablename__ = "lost_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False)
    contact = Column(String(255), nullable=False)
    owner = Column(String(255), nullable=True)  # Submitter email; NULL when admin-created
    date_lost = Column(Date, nullable=False)
    status = Column(EnumValue(LostItemStatus, 20), default=LostItemStatus.MISSING, nullable=False)
    source_report_id = Column(Integer, ForeignKey("reported_items.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_lost_status', 'status'),
    )


class AuditLog(Base):
    """Audit log for security and compliance."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)  # e.g., "report_approve", "user_login"
    resource_type = Column(String(50), nullable=True)  # e.g., "report", "found_item", "user"
    resource_id = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
        Index('idx_audit_created', 'created_at'),
    )
