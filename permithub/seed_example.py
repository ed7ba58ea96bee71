import logging

from sqlalchemy import select

from permithub.db import SessionLocal
from permithub.models import AuthUser, PermitType, Profile, ProfileRole
from permithub.security.passwords import hash_password

logger = logging.getLogger(__name__)

PERMIT_TYPES = (
    ('business-permit', 'Business Permit', 'New or renewal business permit.'),
    ('building-permit', 'Building Permit', 'Construction, renovation or demolition works.'),
    ('motorela-permit', 'Motorela Permit', 'Motorela franchise and operation permit.'),
    ('barangay-clearance', 'Barangay Clearance', 'Clearance issued by the barangay office.'),
)


def _ensure_user(db, *, email: str, username: str, password: str, role: ProfileRole, firstname: str, lastname: str) -> None:
    user = db.execute(select(AuthUser).where(AuthUser.email == email)).scalar_one_or_none()
    if not user:
        user = AuthUser(email=email, username=username, password_hash=hash_password(password))
        db.add(user)
        db.flush()

    profile = db.get(Profile, user.id)
    if not profile:
        db.add(
            Profile(
                id=user.id,
                username=username,
                email=email,
                firstname=firstname,
                lastname=lastname,
                role=role,
            )
        )


def seed() -> None:
    with SessionLocal() as db:
        for slug, title, description in PERMIT_TYPES:
            permit_type = db.execute(select(PermitType).where(PermitType.slug == slug)).scalar_one_or_none()
            if not permit_type:
                db.add(PermitType(slug=slug, title=title, description=description))
        db.flush()

        _ensure_user(
            db,
            email='admin@permithub.local',
            username='admin',
            password='adminpass',
            role=ProfileRole.ADMIN,
            firstname='Portal',
            lastname='Administrator',
        )
        _ensure_user(
            db,
            email='citizen@permithub.local',
            username='citizen1',
            password='citizenpass',
            role=ProfileRole.CITIZEN,
            firstname='Juan',
            lastname='Dela Cruz',
        )

        db.commit()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    seed()
    logger.info('Seed data inserted/verified.')
