from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from permithub.services.permit_records import PermitType
from permithub.services.permit_status_service import PermitView
from permithub.services.sort_utils import normalize_search_text, title_sort_key


@dataclass(frozen=True)
class PermitFilter:
    search_query: str = ''
    permit_type_id: int | None = None


@dataclass(frozen=True)
class PaymentSummary:
    total: int
    paid: int
    unpaid: int


def _title_matches(view: PermitView, query: str) -> bool:
    permit_type = view.permit.permit_type
    return bool(permit_type and query in normalize_search_text(permit_type.title))


def _name_matches(view: PermitView, query: str) -> bool:
    applicant = view.permit.applicant
    if applicant is None:
        return False
    full_name = normalize_search_text(applicant.full_name)
    return any(query in part for part in full_name.split()) or query in full_name


def matches_search(view: PermitView, search_query: str | None) -> bool:
    query = normalize_search_text(search_query)
    if not query:
        return True
    return _name_matches(view, query) or _title_matches(view, query)


def matches_type(view: PermitView, permit_type_id: int | None) -> bool:
    return permit_type_id is None or view.permit.permit_type_id == permit_type_id


def filter_permits(views: Iterable[PermitView], criteria: PermitFilter | None = None) -> list[PermitView]:
    criteria = criteria or PermitFilter()
    return [
        view
        for view in views
        if matches_type(view, criteria.permit_type_id) and matches_search(view, criteria.search_query)
    ]


def permit_type_facets(views: Iterable[PermitView]) -> list[PermitType]:
    by_id: dict[int, PermitType] = {}
    for view in views:
        permit_type = view.permit.permit_type
        if permit_type is not None and permit_type.id not in by_id:
            by_id[permit_type.id] = permit_type
    return sorted(by_id.values(), key=lambda permit_type: title_sort_key(permit_type.title))


def summarize_payments(views: Iterable[PermitView]) -> PaymentSummary:
    views = list(views)
    total = len(views)
    paid = sum(1 for view in views if view.has_completed_payment)
    return PaymentSummary(total=total, paid=paid, unpaid=max(total - paid, 0))
