from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import CITEXT, INET
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


class ProfileRole(str, Enum):
    CITIZEN = 'citizen'
    ADMIN = 'admin'


class PermitStatus(str, Enum):
    PENDING = 'pending'
    UNDER_REVIEW = 'under_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class NotificationKind(str, Enum):
    PERMIT_READY = 'permit_ready'
    PAYMENT_REQUIRED = 'payment_required'
    GENERAL = 'general'
    APPLICATION_REJECTED = 'application_rejected'


class SessionPurpose(str, Enum):
    LOGIN = 'LOGIN'
    RECOVERY = 'RECOVERY'


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class AuthUser(Base):
    __tablename__ = 'auth_users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(CITEXT(), nullable=False, unique=True)
    username: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[str] = mapped_column(String(36), ForeignKey('auth_users.id', ondelete='CASCADE'), primary_key=True)
    username: Mapped[str | None] = mapped_column(CITEXT(), unique=True)
    email: Mapped[str | None] = mapped_column(CITEXT())
    firstname: Mapped[str | None] = mapped_column(Text)
    middlename: Mapped[str | None] = mapped_column(Text)
    lastname: Mapped[str | None] = mapped_column(Text)
    gender: Mapped[str | None] = mapped_column(Text)
    birthdate: Mapped[date | None] = mapped_column(Date)
    contactnumber: Mapped[str | None] = mapped_column(Text)
    fulladdress: Mapped[str | None] = mapped_column(Text)
    role: Mapped[ProfileRole] = mapped_column(
        SQLEnum(ProfileRole, name='profile_role', values_callable=_values),
        nullable=False,
        default=ProfileRole.CITIZEN,
        server_default='citizen',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PermitType(Base):
    __tablename__ = 'permit_types'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Permit(Base):
    __tablename__ = 'permits'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    applicant_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('profiles.id'))
    permit_type_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('permit_types.id'))
    address: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[PermitStatus] = mapped_column(
        SQLEnum(PermitStatus, name='permit_status', values_callable=_values),
        nullable=False,
        default=PermitStatus.PENDING,
        server_default='pending',
    )
    admin_comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Payment(Base):
    __tablename__ = 'payments'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    permit_id: Mapped[str] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    payment_method: Mapped[str | None] = mapped_column(Text)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name='payment_status', values_callable=_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        server_default='pending',
    )
    payment_reference: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UploadedImage(Base):
    __tablename__ = 'uploaded_images'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    permit_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'))
    uploader_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('profiles.id'))
    category: Mapped[str | None] = mapped_column(Text)
    file_name: Mapped[str | None] = mapped_column(Text)
    mime_type: Mapped[str | None] = mapped_column(Text)
    public_url: Mapped[str | None] = mapped_column(Text)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BusinessPermitDetail(Base):
    __tablename__ = 'business_permit_details'

    permit_id: Mapped[str] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict, server_default='{}')


class BuildingPermitDetail(Base):
    __tablename__ = 'building_permit_details'

    permit_id: Mapped[str] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict, server_default='{}')


class MotorelaPermit(Base):
    __tablename__ = 'motorela_permits'

    permit_id: Mapped[str] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict, server_default='{}')


class PermitAudit(Base):
    __tablename__ = 'permit_audit'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    permit_id: Mapped[str] = mapped_column(String(36), ForeignKey('permits.id', ondelete='CASCADE'), nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('profiles.id'))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    permit_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('permits.id', ondelete='SET NULL'))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationKind] = mapped_column(
        SQLEnum(NotificationKind, name='notification_kind', values_callable=_values),
        nullable=False,
        default=NotificationKind.GENERAL,
        server_default='general',
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    gcash_qr_code_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('auth_users.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    permit_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('permits.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(INET)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('auth_users.id', ondelete='CASCADE'), nullable=False)
    purpose: Mapped[SessionPurpose] = mapped_column(
        SQLEnum(SessionPurpose, name='session_purpose'),
        nullable=False,
        default=SessionPurpose.LOGIN,
        server_default='LOGIN',
    )
    ip: Mapped[str | None] = mapped_column(INET)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
