# diocese_site/__init__.py
# Flask app factory for the diocese site (donation pipeline API).
#
# Order matters:
#   config -> proxy/logging -> extensions -> request hooks -> blueprints -> CLI

from __future__ import annotations

import logging
import os
import secrets
import time
from typing import Any, Optional, Type, Union
from uuid import uuid4

from dotenv import load_dotenv
from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import import_string

# Real environment variables always win over .env
load_dotenv(override=False)

from diocese_site.extensions import babel, cors, db, init_stripe, mail, migrate  # noqa: E402

__version__ = "1.0.0"

ConfigTarget = Union[str, Type[Any], None]

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s rid=%(request_id)s | %(message)s"


# ----------------------------
# Config
# ----------------------------
def _load_config(app: Flask, target: ConfigTarget) -> None:
    """
    `target` may be a config class, a dotted path, or a short name
    ("development", "testing", "production"). Falls back to FLASK_CONFIG,
    then to ENV=production -> ProductionConfig, else DevelopmentConfig.
    """
    from diocese_site.config import CONFIG_BY_NAME

    target = target or (os.getenv("FLASK_CONFIG") or "").strip() or None
    if target is None:
        wants_prod = (os.getenv("ENV") or os.getenv("FLASK_ENV") or "").strip().lower() in {"production", "prod"}
        target = "production" if wants_prod else "development"
    if isinstance(target, str):
        target = CONFIG_BY_NAME.get(target.lower()) or import_string(target)

    app.config.from_object(target)
    hook = getattr(target, "init_app", None)
    if callable(hook):
        hook(app)

    app.config["ENV"] = str(app.config.get("ENV") or "development").strip().lower()
    if app.config["ENV"] == "production":
        app.config["DEBUG"] = False
    app.config.setdefault("SECRET_KEY", secrets.token_urlsafe(32))
    app.config.setdefault("JSON_SORT_KEYS", False)


# ----------------------------
# Logging (request id on every line)
# ----------------------------
class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.request_id = g.get("request_id", "-")
        except RuntimeError:
            record.request_id = "-"
        return True


def _setup_logging(app: Flask) -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_diocese", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler._diocese = True  # type: ignore[attr-defined]
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)

    root.setLevel(str(app.config.get("LOG_LEVEL") or "INFO").upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL") or "WARNING").upper())
    app.logger.info("diocese_site %s starting (ENV=%s)", __version__, app.config["ENV"])


def _trust_proxy(app: Flask) -> None:
    trust = app.config.get("TRUST_PROXY")
    if trust is None:
        trust = app.config["ENV"] == "production"
    if trust:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)
        app.logger.info("ProxyFix on: X-Forwarded-* headers are trusted")


def _init_sentry(app: Flask) -> None:
    dsn = str(app.config.get("SENTRY_DSN") or os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
    except ImportError:
        app.logger.warning("SENTRY_DSN is set but sentry-sdk is not installed (extra: diocese-site[sentry])")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        environment=app.config["ENV"],
        release=os.getenv("GIT_COMMIT") or __version__,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE") or 0),
        send_default_pii=False,
    )
    app.logger.info("Sentry enabled")


# ----------------------------
# Extensions
# ----------------------------
def _cors_origins(raw: Any):
    s = str(raw or "").strip()
    if not s or s == "*":
        return "*"
    return [o.strip() for o in s.split(",") if o.strip()]


def _select_locale() -> Optional[str]:
    supported = current_app.config.get("BABEL_SUPPORTED_LOCALES") or ["pt_BR", "en"]
    return request.accept_languages.best_match(supported) or current_app.config.get("BABEL_DEFAULT_LOCALE")


def _init_extensions(app: Flask) -> None:
    db.init_app(app)

    # Local SQLite databases are created on boot; real databases go through `flask db upgrade`.
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")
    if uri.startswith("sqlite") and app.config.get("AUTO_CREATE_SQLITE", True):
        import diocese_site.models  # noqa: F401

        with app.app_context():
            db.create_all()

    migrate.init_app(app, db, compare_type=True, render_as_batch=True)
    mail.init_app(app)
    babel.init_app(app, locale_selector=_select_locale)

    # The checkout UI calls the API from the browser; webhooks are server to server.
    origins = _cors_origins(app.config.get("CORS_ORIGINS"))
    cors.init_app(
        app,
        resources={r"/donations*": {"origins": origins}, r"/payments*": {"origins": origins}},
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        supports_credentials=False,
    )

    init_stripe(app)


# ----------------------------
# Request hooks + JSON errors
# ----------------------------
def _install_request_hooks(app: Flask) -> None:
    @app.before_request
    def _tag_request():
        g.request_id = (request.headers.get("X-Request-ID") or uuid4().hex)[:64]
        g.started = time.perf_counter()

    @app.after_request
    def _stamp_response(resp):
        resp.headers["X-Request-ID"] = g.get("request_id", "-")
        if g.get("started"):
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - g.started) * 1000))
        return resp

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        code = (err.name or "error").lower().replace(" ", "_")
        resp = jsonify({"ok": False, "error": err.description or err.name, "code": code})
        resp.status_code = err.code or 500
        resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.errorhandler(Exception)
    def _unhandled(err: Exception):
        app.logger.exception("unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        resp = jsonify({"ok": False, "error": "Internal Server Error", "code": "internal_error"})
        resp.status_code = 500
        resp.headers["Cache-Control"] = "no-store"
        return resp


def _install_routes(app: Flask) -> None:
    from diocese_site.blueprints.health import bp as health_bp
    from diocese_site.blueprints.payments import bp as payments_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(health_bp)

    @app.get("/healthz")
    def healthz():
        return {
            "ok": True,
            "status": "ok",
            "brand": app.config.get("BRAND_NAME"),
            "env": app.config["ENV"],
            "request_id": g.get("request_id", "-"),
        }

    @app.get("/version")
    def version():
        return {
            "version": os.getenv("GIT_COMMIT") or __version__,
            "env": app.config["ENV"],
            "public_base_url": app.config.get("PUBLIC_BASE_URL") or "",
        }


# ----------------------------
# Factory
# ----------------------------
def create_app(config: ConfigTarget = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    _load_config(app, config)
    _trust_proxy(app)
    _setup_logging(app)
    _init_sentry(app)
    _init_extensions(app)
    _install_request_hooks(app)
    _install_routes(app)

    from diocese_site.cli import donations_cli

    app.cli.add_command(donations_cli)
    return app


__all__ = ["create_app", "__version__"]
