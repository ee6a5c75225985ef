from flask import Blueprint, current_app, g, request

from .helpers import (
    _request_payload,
    _utcnow_naive,
    _validate_announcement_payload,
    _validate_login_payload,
    admin_required,
    api_error,
    api_success,
    issue_admin_token,
    pagination_meta,
    parse_bool_filter,
    parse_page,
    sanitize_filter,
)
from .extensions import limiter
from .models import Admin, Announcement, Message, db

admin_bp = Blueprint("admin", __name__)

ADMIN_PAGE_SIZE = 50


@admin_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    values, errors = _validate_login_payload(_request_payload())
    if errors:
        return api_error(status=422, errors=errors)

    admin = Admin.query.filter_by(email=values["email"]).first()
    if admin is None or not admin.check_password(values["password"]):
        current_app.logger.warning(
            "Admin login failed: email=%s ip=REDACTED", values["email"]
        )
        return api_error("Invalid credentials.", 401)

    # Single session: issuing a token revokes every earlier one
    token = issue_admin_token(admin)
    return api_success({"token": token, "admin": admin.to_dict()})


@admin_bp.route("/messages", methods=["GET"])
@admin_required
def list_messages():
    q = Message.query

    category = sanitize_filter(request.args.get("category"))
    if category:
        q = q.filter(Message.category == category)

    if request.args.get("is_deleted"):
        flag = parse_bool_filter(request.args.get("is_deleted"))
        if flag is not None:
            q = q.filter(Message.is_deleted.is_(flag))

    q = q.order_by(Message.created_at.desc(), Message.id.desc())
    page = q.paginate(
        page=parse_page(request.args.get("page")),
        per_page=ADMIN_PAGE_SIZE,
        error_out=False,
    )
    return api_success(
        [m.to_admin() for m in page.items],
        meta=pagination_meta(page, include_per_page=True),
    )


@admin_bp.route("/messages/<int:message_id>", methods=["DELETE"])
@admin_required
def destroy_message(message_id: int):
    m = db.session.get(Message, message_id)
    if m is None:
        return api_error("Message not found.", 404)
    if m.is_deleted:
        return api_error("Message is already deleted.", 409)

    now = _utcnow_naive()
    m.is_deleted = True
    m.updated_at = now
    db.session.commit()

    current_app.logger.info(
        "Admin moderation: message deleted admin_id=%s admin_email=%s "
        "message_id=%s action=%s timestamp=%s",
        g.admin.id,
        g.admin.email,
        message_id,
        "soft_delete",
        now.isoformat(),
    )
    return api_success(
        {"id": m.id, "is_deleted": True}, message="Message has been deleted."
    )


@admin_bp.route("/announcements", methods=["POST"])
@admin_required
def store_announcement():
    values, errors = _validate_announcement_payload(_request_payload())
    if errors:
        return api_error(status=422, errors=errors)
    now = _utcnow_naive()
    ann = Announcement(
        title=values["title"],
        content=values["content"],
        is_active=values.get("is_active", True),
        created_at=now,
        updated_at=now,
    )
    db.session.add(ann)
    db.session.commit()
    return api_success(ann.to_dict(), 201)


@admin_bp.route("/announcements/<int:announcement_id>", methods=["PUT"])
@admin_required
def update_announcement(announcement_id: int):
    ann = db.session.get(Announcement, announcement_id)
    if ann is None:
        return api_error("Announcement not found.", 404)
    values, errors = _validate_announcement_payload(_request_payload(), partial=True)
    if errors:
        return api_error(status=422, errors=errors)
    for field, value in values.items():
        setattr(ann, field, value)
    ann.updated_at = _utcnow_naive()
    db.session.commit()
    return api_success(ann.to_dict())


@admin_bp.route("/announcements/<int:announcement_id>", methods=["DELETE"])
@admin_required
def destroy_announcement(announcement_id: int):
    ann = db.session.get(Announcement, announcement_id)
    if ann is None:
        return api_error("Announcement not found.", 404)
    db.session.delete(ann)
    db.session.commit()
    return api_success(message="Announcement has been deleted.")
