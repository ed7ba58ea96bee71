from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from permithub.models import PaymentStatus
from permithub.services.permit_records import PROOF_OF_PAYMENT, Payment, Permit


@dataclass(frozen=True)
class PermitView:
    permit: Permit
    has_completed_payment: bool
    last_completed_payment: Payment | None


def last_completed_payment(payments: Iterable[Payment]) -> Payment | None:
    completed = [payment for payment in payments if payment.payment_status == PaymentStatus.COMPLETED.value]
    if not completed:
        return None
    return max(completed, key=lambda payment: payment.created_at)


def has_completed_payment(permit: Permit) -> bool:
    # Older permits only carry an uploaded receipt image; both count as paid.
    paid_by_record = any(payment.payment_status == PaymentStatus.COMPLETED.value for payment in permit.payments)
    paid_by_image = any(image.category == PROOF_OF_PAYMENT for image in permit.uploaded_images)
    return paid_by_record or paid_by_image


def derive_view(permit: Permit) -> PermitView:
    return PermitView(
        permit=permit,
        has_completed_payment=has_completed_payment(permit),
        last_completed_payment=last_completed_payment(permit.payments),
    )


def aggregate(permits: Iterable[Permit]) -> list[PermitView]:
    return [derive_view(permit) for permit in permits]
