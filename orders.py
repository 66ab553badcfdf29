"""
Print orders: checkout with artwork uploads, customer history and the admin
lifecycle (status and offline payment overrides).
"""
import html
import logging
import re
import time
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import UploadFile
from pymongo.database import Database

from config import Settings
from database import create_document, get_documents, parse_object_id, to_str_id, utcnow
from errors import ForbiddenError, NotFoundError, PayloadTooLargeError, ValidationError
from notify import send_email
from schemas import ORDER_STATUSES, Order, OrderFile, SessionView

logger = logging.getLogger(__name__)

_unsafe_chars = re.compile(r"[^a-zA-Z0-9._-]")

ADMIN_SORTS = {
    "total_asc": ("total", False),
    "total_desc": ("total", True),
    "status": ("status", False),
}


def _allowed_type(mime_type: str) -> bool:
    return mime_type.startswith("image/") or mime_type == "application/pdf"


def store_uploads(settings: Settings, uploads: List[UploadFile]) -> List[dict]:
    """Validate every file first, then write them to the upload dir in upload order."""
    uploads = [u for u in uploads or [] if u is not None and u.filename]
    if len(uploads) > settings.max_upload_files:
        raise ValidationError(f"Too many files. Max {settings.max_upload_files} files.")

    max_mb = settings.max_upload_bytes // (1024 * 1024)
    contents = []
    for upload in uploads:
        mime_type = upload.content_type or ""
        if not _allowed_type(mime_type):
            raise ValidationError("Only image files and PDF are allowed.")
        data = upload.file.read(settings.max_upload_bytes + 1)
        if len(data) > settings.max_upload_bytes:
            raise PayloadTooLargeError(f"File too large. Max {max_mb}MB per file.")
        contents.append((upload, mime_type, data))

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    stored = []
    for upload, mime_type, data in contents:
        filename = f"{int(time.time() * 1000)}-{_unsafe_chars.sub('_', upload.filename)}"
        target = upload_dir / filename
        # same millisecond and same name
        suffix = 1
        while target.exists():
            filename = f"{int(time.time() * 1000)}-{suffix}-{_unsafe_chars.sub('_', upload.filename)}"
            target = upload_dir / filename
            suffix += 1
        target.write_bytes(data)
        stored.append({
            "descriptor": OrderFile(
                filename=filename,
                path=f"/uploads/{filename}",
                original_name=upload.filename,
                mime_type=mime_type,
                size=len(data),
            ),
            "absolute_path": str(target),
        })
    return stored


def _number(value, default, cast=float):
    if value is None or value == "":
        return cast(default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid numeric field")


def build_order(user_id: str, fields: Dict[str, Optional[str]], files: List[OrderFile]) -> Order:
    quantity = _number(fields.get("quantity"), 1, int)
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    amounts = {key: _number(fields.get(key), 0) for key in ("custom_w", "custom_h", "price", "delivery_fee", "total")}
    if any(amounts[key] < 0 for key in ("price", "delivery_fee", "total")):
        raise ValidationError("Amounts cannot be negative")
    return Order(
        user_id=user_id,
        service_type=fields.get("service_type") or "print",
        size=fields.get("size") or "",
        finish=fields.get("finish") or "vinyl",
        quantity=quantity,
        delivery=fields.get("delivery") or "deliver",
        instructions=fields.get("instructions") or "",
        files=files,
        **amounts,
    )


def _order_email(order_id: str, user: SessionView, order: Order) -> str:
    def esc(value):
        return html.escape(str(value if value is not None else ""), quote=False)

    size = esc(order.size)
    if order.size == "custom":
        size += f" ({esc(order.custom_w)}x{esc(order.custom_h)} ft)"
    rows = [
        ("Customer", f"{esc(user.name)} &lt;{esc(user.email)}&gt;<br>Phone: {esc(user.phone)}"),
        ("Address", esc(user.address)),
        ("Service", esc(order.service_type)),
        ("Size", size),
        ("Finish / Qty", f"{esc(order.finish)} / {esc(order.quantity)}"),
        ("Delivery", esc(order.delivery)),
        ("Totals", f"Price: &#8377;{esc(order.price)} + Delivery: &#8377;{esc(order.delivery_fee)} = "
                   f"<strong>Total: &#8377;{esc(order.total)}</strong>"),
    ]
    table = "".join(
        f'<tr><td style="border:1px solid #eee"><strong>{label}</strong></td>'
        f'<td style="border:1px solid #eee">{value}</td></tr>'
        for label, value in rows
    )
    if order.files:
        files = f"Files ({len(order.files)}): " + ", ".join(esc(f.original_name) for f in order.files)
    else:
        files = "No files attached."
    return (
        '<div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif">'
        f'<h2 style="margin:0 0 10px;color:#d7261b">New Order {esc(order_id)}</h2>'
        f'<table style="width:100%;border-collapse:collapse" cellpadding="6">{table}</table>'
        '<div style="margin-top:14px;padding:12px;border-radius:8px;background:#fff3cd;border:1px solid #ffeeba">'
        '<div style="font-weight:700;color:#856404;margin-bottom:6px">Design Instructions</div>'
        f'<div style="white-space:pre-wrap;color:#343a40">{esc(order.instructions) or "-"}</div></div>'
        f'<div style="margin-top:10px;color:#6b7280;font-size:14px">{files}</div>'
        "</div>"
    )


def create_order(
    db: Database,
    settings: Settings,
    user: SessionView,
    fields: Dict[str, Optional[str]],
    uploads: Optional[List[UploadFile]] = None,
) -> str:
    order = build_order(user.id, fields, [])
    stored = store_uploads(settings, uploads or [])
    order.files = [s["descriptor"] for s in stored]
    try:
        order_id = create_document(db, "order", order)
    except Exception:
        for s in stored:
            Path(s["absolute_path"]).unlink(missing_ok=True)
        raise
    logger.info("Order %s placed by %s with %d file(s)", order_id, user.email, len(stored))

    attachments = [
        {"filename": s["descriptor"].original_name, "path": s["absolute_path"], "content_type": s["descriptor"].mime_type}
        for s in stored
    ]
    send_email(
        settings,
        settings.business_email,
        f"New Order #{order_id} from {user.email}",
        _order_email(order_id, user, order),
        attachments,
    )
    return order_id


def list_user_orders(db: Database, user_id: str) -> List[dict]:
    docs = get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", -1)])
    return [to_str_id(d) for d in docs]


# ----- Admin -----

def require_admin(settings: Settings, snapshot: SessionView) -> SessionView:
    admin_email = settings.admin_email_norm
    if not snapshot.is_admin or not admin_email or snapshot.email.lower() != admin_email:
        raise ForbiddenError("Admin only")
    return snapshot


def list_orders(db: Database, status: Optional[str] = None, q: Optional[str] = None, sort: Optional[str] = None) -> List[dict]:
    query = {"status": status} if status else {}
    docs = get_documents(db, "order", query, sort=[("created_at", -1)])

    user_ids = {parse_object_id(d.get("user_id")) for d in docs}
    users = {
        str(u["_id"]): u
        for u in db["user"].find({"_id": {"$in": [oid for oid in user_ids if oid is not None]}})
    }

    orders = []
    needle = (q or "").strip().lower()
    for doc in docs:
        user = users.get(doc.get("user_id"))
        if user is None:
            continue
        doc = to_str_id(doc)
        doc["user_email"] = user.get("email", "")
        doc["user_name"] = user.get("name", "")
        doc["user_phone"] = user.get("phone", "")
        if needle and not any(needle in str(doc[k]).lower() for k in ("user_email", "user_name", "id")):
            continue
        orders.append(doc)

    if sort in ADMIN_SORTS:
        key, reverse = ADMIN_SORTS[sort]
        if key == "total":
            orders.sort(key=lambda o: o.get("total") or 0, reverse=reverse)
        else:
            orders.sort(key=lambda o: str(o.get(key) or ""), reverse=reverse)
    return orders


def _order_oid(order_id):
    oid = parse_object_id(order_id)
    if oid is None:
        raise NotFoundError("Order not found")
    return oid


def update_status(db: Database, order_id: str, status) -> None:
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid status")
    result = db["order"].update_one(
        {"_id": _order_oid(order_id)},
        {"$set": {"status": status, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Order not found")
    logger.info("Order %s status -> %s", order_id, status)


def update_payment_status(db: Database, order_id: str, status) -> None:
    status = str(status or "").lower()
    if status not in ("unpaid", "paid"):
        raise ValidationError("Invalid payment status")

    oid = _order_oid(order_id)
    now = utcnow()
    if status == "paid":
        # an order that is already paid keeps its provider fields
        query = {"_id": oid, "payment_status": {"$ne": "paid"}}
        updates = {"payment_status": "paid", "payment_provider": "offline", "paid_at": now, "updated_at": now}
    else:
        query = {"_id": oid}
        updates = {
            "payment_status": "unpaid",
            "payment_provider": None,
            "payment_order_id": None,
            "payment_payment_id": None,
            "payment_signature": None,
            "payment_amount": None,
            "paid_at": None,
            "updated_at": now,
        }
    result = db["order"].update_one(query, {"$set": updates})
    if result.matched_count == 0:
        if db["order"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFoundError("Order not found")
        logger.info("Order %s already paid, admin override ignored", order_id)
        return
    logger.info("Order %s payment status -> %s (admin)", order_id, status)
