"""
Accounts, one-time codes and sessions.

Users sign up with a password but cannot log in until they prove control of
their email with a one-time code. The configured admin address never logs in
with a password; it only ever uses a one-time code, and its account is created
on the first code request if it does not exist yet.

The admin flag is derived from configuration, not trusted from storage: every
path that loads a full user record re-syncs it before a session snapshot is
produced, so a changed ADMIN_EMAIL takes effect on the next interaction.
"""
import logging
from datetime import timedelta
from functools import lru_cache
from typing import Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import as_utc, create_document, parse_object_id, utcnow
from errors import AuthError, ConflictError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from notify import send_email
from schemas import SessionView, User
from security import (
    generate_otp_code,
    generate_session_token,
    generate_unusable_password,
    hash_secret,
    normalize_email,
    normalize_phone,
    verify_secret,
)

logger = logging.getLogger(__name__)

OTP_EMAIL_SUBJECT = "Your RR Digi Media verification OTP"
OTP_EMAIL_TEMPLATE = """
<div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif">
  <h2 style="margin:0 0 10px">Verification code</h2>
  <p>Your one-time password (OTP) is:</p>
  <div style="font-size:28px;font-weight:800;letter-spacing:2px">{code}</div>
  <p style="color:#6b7280">This code expires in {minutes} minutes. If you didn't request this, you can ignore this email.</p>
</div>"""


# ----- Credential store -----

def find_user_by_email(db: Database, email_norm: str) -> Optional[dict]:
    if not email_norm:
        return None
    return db["user"].find_one({"email": email_norm})


def find_user_by_id(db: Database, user_id: str) -> Optional[dict]:
    oid = parse_object_id(user_id)
    if oid is None:
        return None
    return db["user"].find_one({"_id": oid})


def should_be_admin(settings: Settings, email) -> bool:
    admin_email = settings.admin_email_norm
    return bool(admin_email) and admin_email == normalize_email(email)


def sync_admin_flag(db: Database, settings: Settings, user: dict) -> dict:
    expected = should_be_admin(settings, user.get("email"))
    if bool(user.get("is_admin")) != expected:
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_admin": expected, "updated_at": utcnow()}})
        logger.info("Admin flag for user %s corrected to %s", user["_id"], expected)
        user["is_admin"] = expected
    return user


def materialize_session_snapshot(user: dict) -> SessionView:
    return SessionView(
        id=str(user["_id"]),
        email=user.get("email", ""),
        name=user.get("name") or "",
        phone=user.get("phone") or "",
        address=user.get("address") or "",
        is_admin=bool(user.get("is_admin")),
        email_verified=bool(user.get("email_verified")),
        phone_verified=bool(user.get("phone_verified")),
    )


@lru_cache
def _decoy_hash(rounds: int) -> str:
    return hash_secret(generate_unusable_password(), rounds)


# ----- OTP ledger -----

def issue_email_otp(db: Database, settings: Settings, user: dict, email_norm: str) -> Optional[str]:
    """Store a fresh challenge and mail the code. Returns the code outside production."""
    code = generate_otp_code()
    created_at = utcnow()
    create_document(db, "otp", {
        "user_id": str(user["_id"]),
        "email": email_norm,
        "otp_hash": hash_secret(code, settings.bcrypt_rounds),
        "attempts": 0,
        "created_at": created_at,
        "expires_at": created_at + timedelta(minutes=settings.otp_ttl_minutes),
        "consumed_at": None,
    })
    html = OTP_EMAIL_TEMPLATE.format(code=code, minutes=settings.otp_ttl_minutes)
    send_email(settings, email_norm, OTP_EMAIL_SUBJECT, html)
    if settings.is_production:
        return None
    return code


def latest_active_challenge(db: Database, email_norm: str) -> Optional[dict]:
    """Newest unconsumed challenge for the address; older ones are never consulted."""
    return db["otp"].find_one(
        {"email": email_norm, "consumed_at": None},
        sort=[("created_at", -1), ("_id", -1)],
    )


# ----- Identity service -----

def signup(db: Database, settings: Settings, email, password, name, phone, address) -> dict:
    if not email or not password:
        raise ValidationError("Email and password are required")
    if not name:
        raise ValidationError("Name is required")
    if not phone:
        raise ValidationError("Mobile number is required")
    if not address:
        raise ValidationError("Address is required")

    email_norm = normalize_email(email)
    if not email_norm:
        raise ValidationError("Email and password are required")
    if find_user_by_email(db, email_norm):
        raise ConflictError("Email already registered")

    user_doc = User(
        email=email_norm,
        name=name,
        password_hash=hash_secret(password, settings.bcrypt_rounds),
        phone=normalize_phone(phone),
        address=address,
        is_admin=should_be_admin(settings, email_norm),
        email_verified=False,
        phone_verified=False,
    )
    try:
        user_id = create_document(db, "user", user_doc)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    logger.info("Account created for %s", email_norm)

    # No session yet: the address has to be verified first
    user = find_user_by_id(db, user_id)
    dev_otp = issue_email_otp(db, settings, user, email_norm)
    result = {"success": True, "requires_otp": True}
    if dev_otp:
        result["dev_otp"] = dev_otp
    return result


def login(db: Database, settings: Settings, email, password) -> SessionView:
    if not email or not password:
        raise ValidationError("Email and password are required")
    email_norm = normalize_email(email)

    if should_be_admin(settings, email_norm):
        raise ForbiddenError("Admin login requires OTP. Please request an OTP and verify to continue.")

    user = find_user_by_email(db, email_norm)
    if user is None:
        # Burn the same hashing time as a real comparison
        verify_secret(password, _decoy_hash(settings.bcrypt_rounds), settings.bcrypt_rounds)
        raise AuthError("Invalid credentials")
    if not verify_secret(password, user.get("password_hash", ""), settings.bcrypt_rounds):
        raise AuthError("Invalid credentials")
    if not user.get("email_verified"):
        raise ForbiddenError("Please verify your email using OTP to continue.")

    user = sync_admin_flag(db, settings, user)
    return materialize_session_snapshot(user)


def _provision_admin(db: Database, settings: Settings, email_norm: str) -> dict:
    # Intentional: the admin account is created on its first OTP request so a
    # fresh deployment only needs ADMIN_EMAIL set. The password is never used.
    user_doc = User(
        email=email_norm,
        name="Admin",
        password_hash=hash_secret(generate_unusable_password(), settings.bcrypt_rounds),
        is_admin=True,
    )
    try:
        create_document(db, "user", user_doc)
        logger.info("Provisioned admin account for %s", email_norm)
    except DuplicateKeyError:
        # a concurrent request got there first
        pass
    return find_user_by_email(db, email_norm)


def request_otp(db: Database, settings: Settings, email) -> dict:
    email_norm = normalize_email(email)
    if not email_norm:
        raise ValidationError("Email is required")

    user = find_user_by_email(db, email_norm)
    if user is None and should_be_admin(settings, email_norm):
        user = _provision_admin(db, settings, email_norm)
    if user is None:
        raise NotFoundError("Account not found. Please sign up first.")

    dev_otp = issue_email_otp(db, settings, user, email_norm)
    result = {"success": True, "issued": True}
    if dev_otp:
        result["dev_otp"] = dev_otp
    return result


def verify_otp(db: Database, settings: Settings, email, code) -> SessionView:
    email_norm = normalize_email(email)
    code = str(code or "").strip()
    if not email_norm or not code:
        raise ValidationError("Email and code are required")

    user = find_user_by_email(db, email_norm)
    if user is None:
        raise AuthError("Invalid code")

    challenge = latest_active_challenge(db, email_norm)
    if challenge is None:
        raise AuthError("Invalid code")
    if int(challenge.get("attempts") or 0) >= settings.otp_max_attempts:
        raise RateLimitError("Too many attempts. Request a new OTP.")
    if as_utc(challenge["expires_at"]) < utcnow():
        raise AuthError("OTP expired. Request a new one.")

    if not verify_secret(code, challenge["otp_hash"], settings.bcrypt_rounds):
        db["otp"].update_one({"_id": challenge["_id"]}, {"$inc": {"attempts": 1}})
        raise AuthError("Invalid code")

    consumed = db["otp"].update_one(
        {"_id": challenge["_id"], "consumed_at": None},
        {"$set": {"consumed_at": utcnow()}},
    )
    if consumed.modified_count == 0:
        raise AuthError("Invalid code")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"email_verified": True, "updated_at": utcnow()}})
    user["email_verified"] = True
    user = sync_admin_flag(db, settings, user)
    logger.info("Email verified for %s", email_norm)
    return materialize_session_snapshot(user)


def is_admin_email(settings: Settings, email) -> bool:
    email_norm = normalize_email(email)
    return bool(email_norm) and should_be_admin(settings, email_norm)


def check_user(db: Database, email, phone) -> dict:
    """Existence pre-check for the signup form; deliberately reveals whether an account exists."""
    email_norm = normalize_email(email)
    phone_norm = normalize_phone(phone)
    if not email_norm or not phone_norm:
        raise ValidationError("Email and phone are required")
    user = find_user_by_email(db, email_norm)
    if user is None:
        return {"exists": False}
    stored_phone = normalize_phone(user.get("phone"))
    if not stored_phone or stored_phone != phone_norm:
        return {"exists": False}
    return {"exists": True, "email_verified": bool(user.get("email_verified"))}


def update_profile(db: Database, settings: Settings, user_id: str, name, phone, address) -> SessionView:
    if not name or not phone or not address:
        raise ValidationError("Name, phone, and address are required")
    user = find_user_by_id(db, user_id)
    if user is None:
        raise AuthError("Not authenticated")
    updates = {
        "name": name,
        "phone": normalize_phone(phone),
        "address": address,
        "phone_verified": False,
        "updated_at": utcnow(),
    }
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    user.update(updates)
    user = sync_admin_flag(db, settings, user)
    return materialize_session_snapshot(user)


# ----- Sessions -----

def open_session(db: Database, snapshot: SessionView) -> str:
    token = generate_session_token()
    create_document(db, "session", {"user_id": snapshot.id, "token": token})
    return token


def resolve_session(db: Database, settings: Settings, token: Optional[str]) -> Tuple[dict, SessionView]:
    if not token:
        raise AuthError("Not authenticated")
    session = db["session"].find_one({"token": token})
    if session is None:
        raise AuthError("Not authenticated")
    # the TTL index sweeps lazily, so expiry is also checked here
    expires_at = as_utc(session["created_at"]) + timedelta(hours=settings.session_ttl_hours)
    if expires_at <= utcnow():
        db["session"].delete_one({"_id": session["_id"]})
        raise AuthError("Not authenticated")
    user = find_user_by_id(db, session["user_id"])
    if user is None:
        raise AuthError("Not authenticated")
    user = sync_admin_flag(db, settings, user)
    return user, materialize_session_snapshot(user)


def close_session(db: Database, token: Optional[str]) -> None:
    if token:
        db["session"].delete_one({"token": token})
