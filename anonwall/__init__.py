import atexit
import os
import re

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .extensions import cache, limiter
from .helpers import start_expiry_sweeper, stop_expiry_sweeper
from .models import db

DEFAULT_CORS_PATTERN = r"^https://anonwall-frontend.*\.vercel\.app$"

# Cache backends that live inside a single worker process
LOCAL_CACHE_TYPES = ("SimpleCache", "simple", "NullCache", "null")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return default


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def create_app(config=None):
    app = Flask(__name__)
    # Use a stable secret so issued hashes stay comparable across reloads
    app.config["SECRET_KEY"] = os.environ.get(
        "FLASK_SECRET_KEY", "dev-secret-key-change-me"
    )
    app.config["APP_KEY"] = os.environ.get("ANONWALL_APP_KEY", "")
    # Database & Cache config
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "DATABASE_URL", "sqlite:///app.db"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    redis_url = os.environ.get("CACHE_REDIS_URL", "").strip()
    # Like guard must be shared across workers; Redis whenever a URL is given
    app.config["CACHE_TYPE"] = os.environ.get(
        "CACHE_TYPE", "RedisCache" if redis_url else "SimpleCache"
    )
    app.config.setdefault("CACHE_DEFAULT_TIMEOUT", 60)
    if redis_url:
        app.config["CACHE_REDIS_URL"] = redis_url
    # CORS: configured frontend plus preview deployments
    app.config["FRONTEND_URL"] = os.environ.get(
        "FRONTEND_URL", "http://localhost:3000"
    )
    extra = os.environ.get("ANONWALL_CORS_ORIGINS", "").strip()
    app.config["CORS_EXTRA_ORIGINS"] = [o.strip() for o in extra.split(",") if o.strip()]
    app.config["CORS_ORIGIN_PATTERN"] = os.environ.get(
        "ANONWALL_CORS_PATTERN", DEFAULT_CORS_PATTERN
    )
    # Throttling & proxies
    app.config["RATELIMIT_ENABLED"] = _env_flag("ANONWALL_RATELIMIT", "1")
    app.config["RATELIMIT_STORAGE_URI"] = os.environ.get(
        "ANONWALL_RATELIMIT_STORAGE", redis_url or "memory://"
    )
    app.config["RATELIMIT_HEADERS_ENABLED"] = True
    app.config["TRUST_PROXY"] = _env_flag("ANONWALL_TRUST_PROXY", "0")
    # Lifetimes (hours / seconds)
    app.config["MESSAGE_TTL_HOURS"] = _env_int("ANONWALL_MESSAGE_TTL_HOURS", 24)
    app.config["LIKE_GUARD_TTL"] = _env_int("ANONWALL_LIKE_TTL", 86400)
    app.config["SWEEP_INTERVAL_SEC"] = _env_int("ANONWALL_SWEEP_INTERVAL", 3600)
    app.config["CLOCK"] = None
    # Alembic-managed deployments turn this off
    app.config["AUTO_CREATE_TABLES"] = _env_flag("ANONWALL_AUTO_CREATE", "1")

    if config:
        app.config.update(config)
    if not app.config.get("APP_KEY"):
        app.config["APP_KEY"] = app.config["SECRET_KEY"]

    if app.config.get("TRUST_PROXY"):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    db.init_app(app)
    cache.init_app(app)
    limiter.init_app(app)

    if app.config["CACHE_TYPE"] in LOCAL_CACHE_TYPES and not app.config.get("TESTING"):
        app.logger.warning(
            "CACHE_TYPE=%s is per-process: the like guard is not shared between "
            "workers. Set CACHE_REDIS_URL for multi-worker deployments.",
            app.config["CACHE_TYPE"],
        )

    # Blueprints: public API and admin API kept separate
    from .admin import admin_bp
    from .api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    origin_re = re.compile(app.config["CORS_ORIGIN_PATTERN"])

    def _origin_allowed(origin: str) -> bool:
        allowed = [app.config["FRONTEND_URL"], *app.config["CORS_EXTRA_ORIGINS"]]
        return origin in allowed or bool(origin_re.match(origin))

    @app.after_request
    def _security_headers(resp):
        if not request.path.startswith("/api/"):
            return resp
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        origin = request.headers.get("Origin", "")
        if origin and _origin_allowed(origin):
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.vary.add("Origin")
            if request.method == "OPTIONS":
                resp.headers["Access-Control-Allow-Methods"] = (
                    "GET, POST, PUT, DELETE, OPTIONS"
                )
                resp.headers["Access-Control-Allow-Headers"] = request.headers.get(
                    "Access-Control-Request-Headers", "Content-Type, Authorization"
                )
        return resp

    # --- JSON error envelope for framework errors ---
    @app.errorhandler(HTTPException)
    def _http_error(e):
        return jsonify({"status": "error", "message": e.description}), e.code

    @app.errorhandler(429)
    def _too_many(e):
        return jsonify({"status": "error", "message": "Too Many Attempts."}), 429

    @app.errorhandler(500)
    def _server_error(e):
        return jsonify({"status": "error", "message": "Server Error."}), 500

    start_expiry_sweeper(app)
    atexit.register(stop_expiry_sweeper)

    return app
