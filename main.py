import os
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import identity
import orders
import payments
from config import Settings, get_settings
from database import db as default_db, ensure_indexes, get_db
from errors import ServiceError
from schemas import SessionView

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("printshop")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.is_production and not settings.admin_email_norm:
        raise RuntimeError("ADMIN_EMAIL is required in production.")
    if default_db is not None:
        ensure_indexes(default_db, settings.session_ttl_hours * 3600)
    yield


app = FastAPI(title="RR Digi Media API", lifespan=lifespan)

# Per-client limits, keyed on the remote address. Routes below add tighter ones.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["300 per 15 minutes"],
    enabled=get_settings().rate_limit_enabled,
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    message = exc.detail if getattr(exc.limit, "error_message", None) else "Too many requests. Please try again later."
    return JSONResponse(status_code=429, content={"detail": message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# Models (request bodies). Fields are optional so missing values surface as
# service-level 400s with a readable message.
class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class EmailRequest(BaseModel):
    email: Optional[str] = None

class OTPVerify(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None

class CheckUserRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class StatusUpdate(BaseModel):
    status: Optional[str] = None

class PaymentCreate(BaseModel):
    order_id: Optional[str] = None

class PaymentVerify(BaseModel):
    order_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


# Session helpers
def session_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


def current_user(
    token: Optional[str] = Depends(session_token),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SessionView:
    _, snapshot = identity.resolve_session(db, settings, token)
    return snapshot


def require_admin(
    user: SessionView = Depends(current_user),
    settings: Settings = Depends(get_settings),
) -> SessionView:
    return orders.require_admin(settings, user)


def get_payment_provider(settings: Settings = Depends(get_settings)) -> Optional[payments.PaymentProvider]:
    return payments.provider_from_settings(settings)


def _session_response(db: Database, snapshot: SessionView) -> dict:
    token = identity.open_session(db, snapshot)
    return {"success": True, "token": token, "user": snapshot.model_dump()}


# Auth
@app.post("/api/auth/signup")
def signup(payload: SignupRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return identity.signup(db, settings, payload.email, payload.password, payload.name, payload.phone, payload.address)


@app.post("/api/auth/login")
@limiter.limit("20 per 15 minutes", error_message="Too many login attempts. Please try again later.")
def login(request: Request, payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    snapshot = identity.login(db, settings, payload.email, payload.password)
    return _session_response(db, snapshot)


@app.post("/api/auth/request-otp")
@limiter.limit("5 per 15 minutes", error_message="Too many OTP requests. Please wait and try again.")
def request_otp(request: Request, payload: EmailRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return identity.request_otp(db, settings, payload.email)


@app.post("/api/auth/verify-otp")
@limiter.limit("10 per 15 minutes", error_message="Too many OTP attempts. Please wait and try again.")
def verify_otp(request: Request, payload: OTPVerify, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    snapshot = identity.verify_otp(db, settings, payload.email, payload.code)
    return _session_response(db, snapshot)


# Boolean only: the client never learns ADMIN_EMAIL unless the user typed it
@app.post("/api/auth/is-admin-email")
def is_admin_email(payload: EmailRequest, settings: Settings = Depends(get_settings)):
    return {"is_admin": identity.is_admin_email(settings, payload.email)}


@app.post("/api/auth/check-user")
def check_user(payload: CheckUserRequest, db: Database = Depends(get_db)):
    return identity.check_user(db, payload.email, payload.phone)


@app.post("/api/auth/logout")
def logout(token: Optional[str] = Depends(session_token), db: Database = Depends(get_db)):
    identity.close_session(db, token)
    return {"success": True}


@app.get("/api/auth/me")
def me(user: SessionView = Depends(current_user)):
    return {"user": user.model_dump()}


@app.post("/api/auth/update-profile")
def update_profile(
    payload: ProfileUpdate,
    user: SessionView = Depends(current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    snapshot = identity.update_profile(db, settings, user.id, payload.name, payload.phone, payload.address)
    return {"success": True, "user": snapshot.model_dump()}


# Orders
@app.post("/api/orders")
@limiter.limit("10 per 10 minutes", error_message="Too many order requests. Please try again later.")
def place_order(
    request: Request,
    service_type: Optional[str] = Form(None),
    size: Optional[str] = Form(None),
    custom_w: Optional[str] = Form(None),
    custom_h: Optional[str] = Form(None),
    finish: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    delivery: Optional[str] = Form(None),
    instructions: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    delivery_fee: Optional[str] = Form(None),
    total: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user: SessionView = Depends(current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    fields = {
        "service_type": service_type,
        "size": size,
        "custom_w": custom_w,
        "custom_h": custom_h,
        "finish": finish,
        "quantity": quantity,
        "delivery": delivery,
        "instructions": instructions,
        "price": price,
        "delivery_fee": delivery_fee,
        "total": total,
    }
    order_id = orders.create_order(db, settings, user, fields, images or [])
    return {"success": True, "order_id": order_id}


@app.get("/api/orders/mine")
def my_orders(user: SessionView = Depends(current_user), db: Database = Depends(get_db)):
    return {"orders": orders.list_user_orders(db, user.id)}


# Admin
@app.get("/api/admin/orders")
def all_orders(
    status: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    admin: SessionView = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"orders": orders.list_orders(db, status, q, sort)}


@app.post("/api/admin/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    admin: SessionView = Depends(require_admin),
    db: Database = Depends(get_db),
):
    orders.update_status(db, order_id, payload.status)
    return {"success": True}


@app.post("/api/admin/orders/{order_id}/payment-status")
def update_payment_status(
    order_id: str,
    payload: StatusUpdate,
    admin: SessionView = Depends(require_admin),
    db: Database = Depends(get_db),
):
    orders.update_payment_status(db, order_id, payload.status)
    return {"success": True}


# Payments
@app.post("/api/payments/razorpay/create")
def create_payment(
    payload: PaymentCreate,
    user: SessionView = Depends(current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: Optional[payments.PaymentProvider] = Depends(get_payment_provider),
):
    return payments.create_payment_intent(db, settings, provider, payload.order_id, user.id)


@app.post("/api/payments/razorpay/verify")
def verify_payment(
    payload: PaymentVerify,
    user: SessionView = Depends(current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return payments.verify_payment_signature(
        db,
        settings,
        payload.order_id,
        user.id,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
    )


@app.get("/")
@limiter.exempt
def root():
    return {"service": "RR Digi Media API", "status": "ok"}


@app.get("/healthz")
@limiter.exempt
def healthz():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
