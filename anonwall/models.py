from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()

CATEGORIES = ("advice", "confession", "fun")


class Message(db.Model):
    __tablename__ = "messages"
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    # HMAC-SHA256 hex of the submitter address; never serialized
    ip_hash = db.Column(db.String(64), nullable=False)
    category = db.Column(db.String(50), index=True, nullable=True)
    likes_count = db.Column(db.Integer, nullable=False, default=0)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, index=True, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, index=True, nullable=True)

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category,
            "likes_count": int(self.likes_count or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def to_admin(self) -> dict:
        item = self.to_public()
        item["is_deleted"] = bool(self.is_deleted)
        return item


class Admin(db.Model):
    __tablename__ = "admins"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    def set_password(self, password: str):
        self.password = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password, password)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


class AdminToken(db.Model):
    __tablename__ = "admin_tokens"
    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(
        db.Integer, db.ForeignKey("admins.id"), index=True, nullable=False
    )
    name = db.Column(db.String(255), nullable=False, default="admin-token")
    # SHA-256 hex of the bearer token; plaintext is only returned at login
    token = db.Column(db.String(64), unique=True, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    admin = db.relationship("Admin")


class Announcement(db.Model):
    __tablename__ = "announcements"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, index=True, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
