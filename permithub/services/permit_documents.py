from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape

from permithub.services.permit_records import PermitDetail
from permithub.services.permit_status_service import last_completed_payment

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates' / 'documents'
CITY_LOGO_URL = '/images/valencia-logo.png'
BLANK = '__________'
NOT_AVAILABLE = 'N/A'

_FILENAME_UNSAFE_RE = re.compile(r'[\\/:*?"<>|\r\n]+')

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(['html']),
    trim_blocks=True,
    lstrip_blocks=True,
)


class PermitFamily(str, Enum):
    BUSINESS = 'business'
    BUILDING = 'building'
    MOTORELA = 'motorela'
    GENERIC = 'generic'

    @classmethod
    def from_slug(cls, slug: str | None) -> PermitFamily:
        normalized = (slug or '').lower()
        # Order matters: a slug naming two families resolves to the first.
        for family in (cls.BUSINESS, cls.BUILDING, cls.MOTORELA):
            if family.value in normalized:
                return family
        return cls.GENERIC


def _first(*values: Any, default: Any = NOT_AVAILABLE) -> Any:
    for value in values:
        if value not in (None, ''):
            return value
    return default


def _long_date(value: datetime | date | None) -> str:
    if value is None:
        return BLANK
    return f'{value:%B} {value.day}, {value.year}'


def _issued_at(detail: PermitDetail) -> datetime:
    permit = detail.permit
    return permit.updated_at or permit.created_at or datetime.now(tz=timezone.utc)


def _format_area(raw: Any) -> str:
    if raw in (None, ''):
        return NOT_AVAILABLE
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        return NOT_AVAILABLE
    return f'{value.normalize():,f} sq.m.'


def _qr_code(explicit: str | None, permit_no: str) -> str:
    return explicit or f'https://api.qrserver.com/v1/create-qr-code/?size=180x180&data={quote(permit_no)}'


def _payment_fields(detail: PermitDetail) -> dict[str, str]:
    payment = last_completed_payment(detail.permit.payments)
    if payment is None:
        return {'official_receipt': BLANK, 'amount_paid': BLANK, 'payment_date': BLANK}
    return {
        'official_receipt': payment.payment_reference or BLANK,
        'amount_paid': f'PHP {payment.amount:,.2f}' if payment.amount else BLANK,
        'payment_date': _long_date(payment.created_at),
    }


def _common(detail: PermitDetail) -> dict[str, Any]:
    permit = detail.permit
    return {
        'permit': permit,
        'permit_title': permit.permit_type.title if permit.permit_type else 'PERMIT',
        'issued_on': _long_date(_issued_at(detail)),
        'city_logo_url': CITY_LOGO_URL,
        **_payment_fields(detail),
    }


def business_context(detail: PermitDetail, applicant_name: str) -> dict[str, Any]:
    permit = detail.permit
    data = detail.business_data or {}
    establishment = data.get('establishment') or {}
    applicant_address = permit.applicant.fulladdress if permit.applicant else None
    owner_name = _first(data.get('owner_name'), data.get('owner'), applicant_name)
    issued = _issued_at(detail)
    permit_no = str(_first(data.get('permit_no'), data.get('permit_number'), permit.id[:8]))
    return {
        **_common(detail),
        'trade_name': _first(
            establishment.get('business_name'),
            establishment.get('trade_name'),
            data.get('business_name'),
            permit.permit_type.title if permit.permit_type else None,
        ),
        'owner_name': owner_name,
        'authorized_representative': _first(data.get('authorized_representative'), owner_name),
        'business_address': _first(
            establishment.get('business_address'), data.get('business_address'), permit.address, applicant_address
        ),
        'nature_of_business': _first(
            establishment.get('line_of_business'),
            establishment.get('nature_of_business'),
            data.get('line_of_business'),
            data.get('nature_of_business'),
        ),
        'valid_until': _first(data.get('valid_until'), default=None) or _long_date(issued + timedelta(days=365)),
        'permit_no': permit_no,
        'qr_code_url': _qr_code(data.get('qr_code_url'), permit_no),
        'city_logo_url': _first(data.get('city_logo_url'), data.get('seal_url'), CITY_LOGO_URL),
    }


def building_context(detail: PermitDetail, applicant_name: str) -> dict[str, Any]:
    permit = detail.permit
    data = detail.building_data or {}
    construction = data.get('construction') or {}
    if isinstance(construction, list):
        construction = construction[0] if construction else {}
    legacy = (permit.details or {}).get('building_permit') or {}
    applicant_address = permit.applicant.fulladdress if permit.applicant else None

    def pick(key: str, legacy_key: str | None = None) -> Any:
        return _first(construction.get(key), data.get(key), legacy.get(legacy_key or key), default=None)

    application_no = str(_first(data.get('application_no'), legacy.get('application_no')))
    return {
        **_common(detail),
        'owner_name': applicant_name,
        'application_no': application_no,
        'bp_no': _first(data.get('bp_no'), legacy.get('bp_no')),
        'location': _first(pick('location', 'construction_location'), permit.address, applicant_address),
        'scope_of_work': _first(pick('scope_of_work')),
        'occupancy_use': _first(pick('occupancy_use')),
        'lot_area': _format_area(pick('lot_area')),
        'floor_area': _format_area(pick('floor_area')),
        'inspector': _first((data.get('inspector') or {}).get('name')),
        'engineer': _first((data.get('engineer') or {}).get('name')),
        'qr_code_url': _qr_code(data.get('qr_code_url'), application_no),
    }


def motorela_context(detail: PermitDetail, applicant_name: str) -> dict[str, Any]:
    permit = detail.permit
    data = detail.motorela_data or {}
    applicant = permit.applicant
    application_no = str(_first(data.get('application_no')))
    permit_no = str(_first(data.get('permit_no'), data.get('permit_number'), data.get('application_no'), permit.id[:8]))
    payment = _payment_fields(detail)
    return {
        **_common(detail),
        'operator': _first(data.get('operator'), applicant_name),
        'application_no': application_no,
        'permit_no': permit_no,
        'plate_no': _first(data.get('plate_no')),
        'body_no': _first(data.get('body_no')),
        'chassis_no': _first(data.get('chassis_no')),
        'motor_no': _first(data.get('motor_no')),
        'make': _first(data.get('make')),
        'route': _first(data.get('route')),
        'operator_address': _first(
            data.get('operator_address'), applicant.fulladdress if applicant else None, permit.address
        ),
        'contact': _first(data.get('contact'), applicant.contactnumber if applicant else None),
        'driver': _first(data.get('driver')),
        'driver_address': _first(data.get('driver_address')),
        'official_receipt': _first(data.get('or_number'), payment['official_receipt']),
        'amount_paid': _first(data.get('amount_paid'), payment['amount_paid']),
        'payment_date': _first(data.get('or_date'), payment['payment_date']),
        'qr_code_url': _qr_code(data.get('qr_code_url'), permit_no),
    }


def _display_key(key: str) -> str:
    return key.replace('_', ' ').title()


def _display_value(value: Any) -> Any:
    if value in (None, ''):
        return NOT_AVAILABLE
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def generic_context(detail: PermitDetail, applicant_name: str) -> dict[str, Any]:
    permit = detail.permit
    applicant_address = permit.applicant.fulladdress if permit.applicant else None
    permit_no = permit.id[:8]
    return {
        **_common(detail),
        'applicant_name': applicant_name,
        'address': _first(permit.address, applicant_address),
        'status': (permit.status or 'approved').upper(),
        'permit_no': permit_no,
        'detail_rows': [(_display_key(key), _display_value(value)) for key, value in (permit.details or {}).items()],
        'qr_code_url': _qr_code(None, permit_no),
    }


Renderer = Callable[[PermitDetail, str], str]


def _renderer(template_name: str, build_context: Callable[[PermitDetail, str], dict[str, Any]]) -> Renderer:
    def render(detail: PermitDetail, applicant_name: str) -> str:
        return _env.get_template(template_name).render(**build_context(detail, applicant_name))

    return render


RENDERERS: dict[PermitFamily, Renderer] = {
    PermitFamily.BUSINESS: _renderer('business.html', business_context),
    PermitFamily.BUILDING: _renderer('building.html', building_context),
    PermitFamily.MOTORELA: _renderer('motorela.html', motorela_context),
    PermitFamily.GENERIC: _renderer('generic.html', generic_context),
}


def renderer_for(family: PermitFamily) -> Renderer:
    return RENDERERS.get(family, RENDERERS[PermitFamily.GENERIC])


def render_permit_document(detail: PermitDetail, applicant_name: str) -> tuple[PermitFamily, str]:
    slug = detail.permit.permit_type.slug if detail.permit.permit_type else None
    family = PermitFamily.from_slug(slug)
    return family, renderer_for(family)(detail, applicant_name)


def document_filename(permit_type_title: str | None, permit_id: str) -> str:
    title = _FILENAME_UNSAFE_RE.sub('-', (permit_type_title or '').strip()) or 'document'
    return f'permit-{title}-{permit_id[:8]}.html'
