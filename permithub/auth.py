from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    CITIZEN = 'citizen'
    ADMIN = 'admin'


ADMIN_HOME = '/admin'
CITIZEN_HOME = '/dashboard'
LOGIN_PATH = '/login'


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    username: str | None = None


@dataclass(frozen=True)
class Profile:
    id: str
    role: Role
    username: str | None = None
    email: str | None = None
    firstname: str | None = None
    middlename: str | None = None
    lastname: str | None = None
    gender: str | None = None
    birthdate: date | None = None
    contactnumber: str | None = None
    fulladdress: str | None = None
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        parts = (self.firstname, self.middlename, self.lastname)
        return ' '.join(part.strip() for part in parts if part and part.strip())

    @property
    def short_name(self) -> str:
        return f'{self.firstname or ""} {self.lastname or ""}'.strip()


def parse_role(value: Any) -> Role:
    raw = value.value if hasattr(value, 'value') else value
    try:
        return Role(str(raw or '').strip().lower())
    except ValueError:
        # Legacy 'client' and 'staff' rows never gained admin rights.
        return Role.CITIZEN


def role_home(role: Role | None) -> str:
    return ADMIN_HOME if role == Role.ADMIN else CITIZEN_HOME


def profile_from_row(row: dict) -> Profile:
    return Profile(
        id=row['id'],
        role=parse_role(row.get('role')),
        username=row.get('username'),
        email=row.get('email'),
        firstname=row.get('firstname'),
        middlename=row.get('middlename'),
        lastname=row.get('lastname'),
        gender=row.get('gender'),
        birthdate=row.get('birthdate'),
        contactnumber=row.get('contactnumber'),
        fulladdress=row.get('fulladdress'),
        created_at=row.get('created_at'),
    )
