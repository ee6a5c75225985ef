import hashlib
import hmac
import html
import os
import re
import secrets
import threading
from datetime import datetime, timedelta, timezone
from functools import wraps

from blinker import Namespace
from bleach import clean
from flask import current_app, g, jsonify, make_response, request

from .extensions import cache
from .models import CATEGORIES, Admin, AdminToken, Message, db

_signals = Namespace()

# Fired after a message is stored; receivers are optional (e.g. a websocket relay)
message_created = _signals.signal("message-created")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")

_TRUE_STRINGS = ("1", "true", "on", "yes")
_FALSE_STRINGS = ("0", "false", "off", "no")


def _utcnow_naive() -> datetime:
    """Return current UTC time as a naive datetime (no tzinfo).

    Honors an injected ``CLOCK`` callable from the app config so expiry
    comparisons can be pinned.
    """
    clock = None
    try:
        clock = current_app.config.get("CLOCK")
    except RuntimeError:
        clock = None
    if callable(clock):
        return _to_naive_utc(clock())
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(dt: datetime) -> datetime:
    """Normalize any datetime to naive UTC for consistent DB storage."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


# --- Response envelope ---


def api_success(data=None, status: int = 200, message: str | None = None, meta=None):
    body = {"status": "success"}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def api_error(message: str | None = None, status: int = 400, errors=None):
    body = {"status": "error"}
    if errors is not None:
        body["errors"] = errors
    if message is not None:
        body["message"] = message
    return jsonify(body), status


def _request_payload() -> dict:
    """JSON body if present, else form fields. Never raises on bad input."""
    data = request.get_json(force=True, silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        return {}
    return data


# --- Sanitizing ---


def strip_tags(value) -> str:
    """Remove every HTML tag from ``value`` while keeping the inner text.

    Entities typed by the user are literal text: ``&`` is escaped before
    bleach sees it and restored afterwards, so ``5 &amp; 6`` is stored as
    typed. Tags that only appear once outer tags are stripped (``<<b>b>``)
    are removed by cleaning again until the text is stable.
    """
    text = "" if value is None else str(value)
    for _ in range(5):
        cleaned = html.unescape(
            clean(
                text.replace("&", "&amp;"),
                tags=set(),
                attributes={},
                strip=True,
                strip_comments=True,
            )
        )
        if cleaned == text:
            return cleaned
        text = cleaned
    return clean(text, tags=set(), attributes={}, strip=True, strip_comments=True)


def sanitize_filter(value) -> str:
    return strip_tags((value or "").strip()).strip()


def parse_page(value) -> int:
    try:
        page = int(value)
    except Exception:
        return 1
    return page if page >= 1 else 1


def parse_bool_filter(value):
    """Loose boolean parse for query strings; None when unrecognised."""
    if isinstance(value, bool):
        return value
    s = str(value or "").strip().lower()
    if s in _TRUE_STRINGS:
        return True
    if s in _FALSE_STRINGS:
        return False
    return None


def _coerce_strict_bool(value):
    """Accept true/false/1/0/"1"/"0" only. Returns (ok, value)."""
    if isinstance(value, bool):
        return True, value
    if value in (1, 0, "1", "0"):
        return True, value in (1, "1")
    return False, None


def pagination_meta(page_obj, include_per_page: bool = False) -> dict:
    meta = {
        "current_page": page_obj.page,
        "last_page": max(int(page_obj.pages or 0), 1),
    }
    if include_per_page:
        meta["per_page"] = page_obj.per_page
    meta["total"] = int(page_obj.total or 0)
    return meta


# --- Submitter identity ---


def client_ip() -> str:
    return request.remote_addr or "unknown"


def hash_ip(address: str) -> str:
    """HMAC-SHA256 of the network address keyed by the server secret."""
    key = str(current_app.config.get("APP_KEY") or current_app.config["SECRET_KEY"])
    return hmac.new(
        key.encode("utf-8"), (address or "").encode("utf-8"), hashlib.sha256
    ).hexdigest()


# --- Messages ---


def visible_messages_query(now: datetime | None = None):
    """Messages the public may see: not soft-deleted and not expired."""
    now = now or _utcnow_naive()
    return Message.query.filter(Message.is_deleted.is_(False)).filter(
        db.or_(Message.expires_at.is_(None), Message.expires_at > now)
    )


def _validate_message_payload(data: dict):
    """Return (values, errors). Errors map field name to a list of messages."""
    errors: dict[str, list[str]] = {}
    content = data.get("content")
    if content is None or (isinstance(content, str) and not content.strip()):
        errors["content"] = ["The content field is required."]
    elif not isinstance(content, str):
        errors["content"] = ["The content field must be a string."]
    elif len(content) > 200:
        errors["content"] = ["The content field must not be greater than 200 characters."]

    category = data.get("category")
    if isinstance(category, str) and not category.strip():
        category = None
    if category is not None:
        if not isinstance(category, str):
            errors["category"] = ["The category field must be a string."]
        elif len(category) > 50:
            errors["category"] = [
                "The category field must not be greater than 50 characters."
            ]
        elif category not in CATEGORIES:
            errors["category"] = ["The selected category is invalid."]

    if errors:
        return None, errors

    sanitized = strip_tags(content).strip()
    if not sanitized:
        return None, {"content": ["The content field must contain text."]}
    return {"content": sanitized, "category": category}, None


def create_message(content: str, category: str | None, ip_address: str) -> Message:
    now = _utcnow_naive()
    ttl_hours = int(current_app.config.get("MESSAGE_TTL_HOURS", 24))
    msg = Message(
        content=content,
        ip_hash=hash_ip(ip_address),
        category=category,
        likes_count=0,
        is_deleted=False,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    )
    db.session.add(msg)
    db.session.commit()
    db.session.refresh(msg)
    return msg


def _emit_message_created(message: Message) -> bool:
    """Best-effort broadcast; receiver failures never reach the caller."""
    try:
        message_created.send(current_app._get_current_object(), message=message)
    except Exception:
        current_app.logger.debug(
            "message_created receiver failed for id=%s", message.id, exc_info=True
        )
        return False
    return True


def like_guard_add(message_id: int, ip_hash: str) -> bool:
    """Atomically claim the like slot for (message, identity).

    True only for the first writer within the guard TTL.
    """
    ttl = int(current_app.config.get("LIKE_GUARD_TTL", 86400))
    key = f"message_like:{message_id}:{ip_hash}"
    return bool(cache.add(key, True, timeout=ttl))


def increment_likes(message_id: int) -> int:
    Message.query.filter(Message.id == message_id).update(
        {Message.likes_count: Message.likes_count + 1}, synchronize_session=False
    )
    db.session.commit()
    count = (
        db.session.query(Message.likes_count).filter(Message.id == message_id).scalar()
    )
    return int(count or 0)


# --- Admin authentication ---


def _digest_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _validate_login_payload(data: dict):
    errors: dict[str, list[str]] = {}
    email = data.get("email")
    password = data.get("password")
    if email is None or (isinstance(email, str) and not email.strip()):
        errors["email"] = ["The email field is required."]
    elif not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        errors["email"] = ["The email field must be a valid email address."]
    if password is None or password == "":
        errors["password"] = ["The password field is required."]
    elif not isinstance(password, str):
        errors["password"] = ["The password field must be a string."]
    if errors:
        return None, errors
    return {"email": email.strip(), "password": password}, None


def issue_admin_token(admin: Admin, name: str = "admin-token") -> str:
    """Revoke every existing token for ``admin`` and return a fresh one."""
    AdminToken.query.filter(AdminToken.admin_id == admin.id).delete(
        synchronize_session=False
    )
    plain = secrets.token_urlsafe(40)
    db.session.add(
        AdminToken(
            admin_id=admin.id,
            name=name,
            token=_digest_token(plain),
            created_at=_utcnow_naive(),
        )
    )
    db.session.commit()
    return plain


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _resolve_bearer_admin():
    token = _bearer_token()
    if not token:
        return None
    row = AdminToken.query.filter_by(token=_digest_token(token)).first()
    if row is None:
        return None
    admin = row.admin
    if admin is None:
        return None
    row.last_used_at = _utcnow_naive()
    db.session.commit()
    return admin


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        admin = _resolve_bearer_admin()
        if admin is None:
            resp = make_response(api_error("Unauthenticated.", 401))
            resp.headers["WWW-Authenticate"] = "Bearer"
            return resp
        g.admin = admin
        return fn(*args, **kwargs)

    return wrapper


def create_or_update_admin(email: str, name: str, password: str) -> Admin:
    now = _utcnow_naive()
    admin = Admin.query.filter_by(email=email).first()
    if admin is None:
        admin = Admin(email=email, name=name, created_at=now)
        db.session.add(admin)
    admin.name = name
    admin.set_password(password)
    admin.updated_at = now
    db.session.commit()
    return admin


# --- Announcements ---


def _validate_announcement_payload(data: dict, partial: bool = False):
    errors: dict[str, list[str]] = {}
    values = {}
    for field, max_len in (("title", 255), ("content", None)):
        if field not in data:
            if not partial:
                errors[field] = [f"The {field} field is required."]
            continue
        val = data.get(field)
        if val is None or (isinstance(val, str) and not val.strip()):
            errors[field] = [f"The {field} field is required."]
        elif not isinstance(val, str):
            errors[field] = [f"The {field} field must be a string."]
        elif max_len is not None and len(val) > max_len:
            errors[field] = [
                f"The {field} field must not be greater than {max_len} characters."
            ]
        else:
            values[field] = val
    if "is_active" in data:
        ok, flag = _coerce_strict_bool(data.get("is_active"))
        if not ok:
            errors["is_active"] = ["The is_active field must be true or false."]
        else:
            values["is_active"] = flag
    if errors:
        return None, errors
    return values, None


# --- Expiry sweeper ---


def sweep_expired_messages(now: datetime | None = None) -> int:
    """Permanently delete every message whose expires_at is at or before now."""
    now = now or _utcnow_naive()
    deleted = (
        Message.query.filter(Message.expires_at.isnot(None))
        .filter(Message.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    current_app.logger.info("[sweeper] cleaned up %s expired message(s)", deleted)
    return int(deleted or 0)


def _sweeper_loop(app, stop_event: threading.Event, interval: float = 3600.0):
    """Background loop that runs the expiry sweep every ``interval`` seconds."""
    with app.app_context():
        current_app.logger.info("[sweeper] loop started (interval=%.0fs)", interval)
        while not stop_event.is_set():
            try:
                sweep_expired_messages()
            except Exception:
                current_app.logger.exception("[sweeper] error in loop; backing off")
                db.session.rollback()
            finally:
                db.session.remove()
            stop_event.wait(interval)


_sweeper_stop_event = threading.Event()
_sweeper_thread = None


def start_expiry_sweeper(app=None):
    """Start the background sweeper thread when ANONWALL_SWEEPER=1."""
    if os.environ.get("ANONWALL_SWEEPER", "0") != "1":
        return
    if app is None:
        try:
            app = current_app._get_current_object()
        except RuntimeError:
            return
    global _sweeper_thread
    _sweeper_stop_event.clear()
    if _sweeper_thread is not None and _sweeper_thread.is_alive():
        return
    interval = float(app.config.get("SWEEP_INTERVAL_SEC", 3600))
    _sweeper_thread = threading.Thread(
        target=_sweeper_loop, args=(app, _sweeper_stop_event, interval), daemon=True
    )
    _sweeper_thread.start()


def stop_expiry_sweeper(timeout: float = 2.0):
    """Signal the sweeper to stop and wait briefly for it to exit."""
    _sweeper_stop_event.set()
    if _sweeper_thread is not None and _sweeper_thread.is_alive():
        _sweeper_thread.join(timeout=timeout)


def sweeper_running() -> bool:
    return _sweeper_thread is not None and _sweeper_thread.is_alive()
