from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from permithub.auth import Profile, profile_from_row

PROOF_OF_PAYMENT = 'proof_of_payment'


@dataclass(frozen=True)
class PermitType:
    id: int
    slug: str
    title: str
    description: str | None = None


@dataclass(frozen=True)
class Payment:
    id: str
    permit_id: str
    payment_status: str
    created_at: datetime
    amount: Decimal = Decimal('0')
    payment_method: str | None = None
    payment_reference: str | None = None


@dataclass(frozen=True)
class UploadedImage:
    id: int
    permit_id: str | None
    category: str | None
    uploaded_at: datetime
    public_url: str | None = None
    file_name: str | None = None
    uploader_id: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    id: int
    action: str
    created_at: datetime
    actor_id: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class Permit:
    id: str
    applicant_id: str | None
    permit_type_id: int | None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    address: str | None = None
    details: dict[str, Any] | None = None
    admin_comment: str | None = None
    permit_type: PermitType | None = None
    applicant: Profile | None = None
    payments: tuple[Payment, ...] = ()
    uploaded_images: tuple[UploadedImage, ...] = ()


@dataclass(frozen=True)
class PermitDetail:
    """Everything known about one permit, as needed for printing."""

    permit: Permit
    business_data: dict[str, Any] | None = None
    building_data: dict[str, Any] | None = None
    motorela_data: dict[str, Any] | None = None
    audit_trail: tuple[AuditEntry, ...] = field(default_factory=tuple)


def permit_type_from_row(row: dict) -> PermitType:
    return PermitType(id=row['id'], slug=row.get('slug') or '', title=row.get('title') or '', description=row.get('description'))


def payment_from_row(row: dict) -> Payment:
    return Payment(
        id=str(row['id']),
        permit_id=str(row['permit_id']),
        payment_status=str(row.get('payment_status') or ''),
        created_at=row['created_at'],
        amount=Decimal(str(row.get('amount') or '0')),
        payment_method=row.get('payment_method'),
        payment_reference=row.get('payment_reference'),
    )


def image_from_row(row: dict) -> UploadedImage:
    return UploadedImage(
        id=row['id'],
        permit_id=row.get('permit_id'),
        category=row.get('category'),
        uploaded_at=row['uploaded_at'],
        public_url=row.get('public_url'),
        file_name=row.get('file_name'),
        uploader_id=row.get('uploader_id'),
    )


def audit_from_row(row: dict) -> AuditEntry:
    return AuditEntry(
        id=row['id'],
        action=row['action'],
        created_at=row['created_at'],
        actor_id=row.get('actor_id'),
        note=row.get('note'),
    )


def permit_from_row(
    row: dict,
    *,
    permit_types: dict[int, PermitType] | None = None,
    applicants: dict[str, dict] | None = None,
    payments: list[Payment] | None = None,
    images: list[UploadedImage] | None = None,
) -> Permit:
    applicant_row = (applicants or {}).get(row.get('applicant_id'))
    return Permit(
        id=str(row['id']),
        applicant_id=row.get('applicant_id'),
        permit_type_id=row.get('permit_type_id'),
        status=str(row.get('status') or ''),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at'),
        address=row.get('address'),
        details=row.get('details'),
        admin_comment=row.get('admin_comment'),
        permit_type=(permit_types or {}).get(row.get('permit_type_id')),
        applicant=profile_from_row(applicant_row) if applicant_row else None,
        payments=tuple(payments or ()),
        uploaded_images=tuple(images or ()),
    )
