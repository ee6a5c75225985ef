from flask import Blueprint, current_app, request

from .helpers import (
    _emit_message_created,
    _request_payload,
    _utcnow_naive,
    _validate_message_payload,
    api_error,
    api_success,
    client_ip,
    create_message,
    hash_ip,
    increment_likes,
    like_guard_add,
    pagination_meta,
    parse_page,
    sanitize_filter,
    visible_messages_query,
)
from .extensions import limiter
from .models import Announcement, Message

api_bp = Blueprint("api", __name__)

PUBLIC_PAGE_SIZE = 12


@api_bp.route("/status")
def api_status():
    return api_success({"time": _utcnow_naive().isoformat()})


@api_bp.route("/messages", methods=["GET"])
@limiter.limit("60 per minute")
def list_messages():
    q = visible_messages_query()

    # Unknown categories simply match nothing; blank ones are ignored
    category = sanitize_filter(request.args.get("category"))
    if category:
        q = q.filter(Message.category == category)

    q = q.order_by(Message.created_at.desc(), Message.id.desc())
    page = q.paginate(
        page=parse_page(request.args.get("page")),
        per_page=PUBLIC_PAGE_SIZE,
        error_out=False,
    )
    return api_success(
        [m.to_public() for m in page.items], meta=pagination_meta(page)
    )


@api_bp.route("/messages", methods=["POST"])
@limiter.limit("10 per minute")
def store_message():
    values, errors = _validate_message_payload(_request_payload())
    if errors:
        current_app.logger.warning(
            "Message validation failed: errors=%s ip=REDACTED", errors
        )
        return api_error(status=422, errors=errors)

    msg = create_message(values["content"], values["category"], client_ip())
    # Result deliberately ignored: broadcasting is optional
    _emit_message_created(msg)
    return api_success(msg.to_public(), 201)


@api_bp.route("/messages/<int:message_id>/like", methods=["POST"])
@limiter.limit("30 per minute")
def like_message(message_id: int):
    m = visible_messages_query().filter(Message.id == message_id).first()
    if m is None:
        return api_error("Message not found or has expired.", 404)

    if not like_guard_add(m.id, hash_ip(client_ip())):
        return api_error("You have already liked this message.", 429)

    return api_success({"likes_count": increment_likes(m.id)})


@api_bp.route("/announcements", methods=["GET"])
def list_announcements():
    rows = (
        Announcement.query.filter(Announcement.is_active.is_(True))
        .order_by(Announcement.created_at.desc(), Announcement.id.desc())
        .all()
    )
    return api_success([a.to_dict() for a in rows])
