from pwdlib import PasswordHash

from permithub.config import settings
from permithub.errors import ValidationError

password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return password_hash.verify(raw_password, hashed_password)


def validate_new_password(password: str, confirm_password: str, *, min_length: int | None = None) -> None:
    if password != confirm_password:
        raise ValidationError('Passwords do not match')
    minimum = settings.min_password_length if min_length is None else min_length
    if len(password) < minimum:
        raise ValidationError(f'Password must be at least {minimum} characters')
