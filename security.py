import hashlib
import hmac
import re
import secrets
from functools import lru_cache

from passlib.context import CryptContext

_non_digits = re.compile(r"\D")


@lru_cache
def _crypt_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_secret(value: str, rounds: int = 10) -> str:
    return _crypt_context(rounds).hash(value)


def verify_secret(value: str, secret_hash: str, rounds: int = 10) -> bool:
    if not secret_hash:
        return False
    try:
        return _crypt_context(rounds).verify(value, secret_hash)
    except ValueError:
        # malformed or foreign hash
        return False


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def normalize_phone(phone) -> str:
    return _non_digits.sub("", str(phone or ""))


def generate_otp_code() -> str:
    """Six digits, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def generate_session_token() -> str:
    return secrets.token_urlsafe(24)


def generate_unusable_password() -> str:
    return secrets.token_urlsafe(32)


def payment_signature(secret: str, provider_order_id: str, provider_payment_id: str) -> str:
    message = f"{provider_order_id}|{provider_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, supplied: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
