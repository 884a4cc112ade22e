# diocese_site/config/config.py
# Environment-driven settings. Gateway credentials are NOT here: they live in
# the gateway_settings table and are read on every request.

from __future__ import annotations

import os
from typing import Optional


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_flag(name: str, default: bool = False) -> bool:
    raw = (env_str(name) or "").lower()
    if raw in {"1", "true", "yes", "on", "y"}:
        return True
    if raw in {"0", "false", "no", "off", "n"}:
        return False
    return default


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name) or default)
    except ValueError:
        return default


def base_url(name: str) -> str:
    return (env_str(name) or "").rstrip("/")


class BaseConfig:
    ENV = (env_str("ENV") or env_str("FLASK_ENV") or "development").lower()
    DEBUG = env_flag("FLASK_DEBUG")
    TESTING = False

    SECRET_KEY = env_str("SECRET_KEY", "dev-change-me")
    BRAND_NAME = env_str("BRAND_NAME", "Diocese")

    # Public URL the payment providers call back on
    PUBLIC_BASE_URL = base_url("PUBLIC_BASE_URL")
    TRUST_PROXY = env_flag("TRUST_PROXY")
    CORS_ORIGINS = env_str("CORS_ORIGINS", "*")

    LOG_LEVEL = env_str("LOG_LEVEL", "INFO")
    WERKZEUG_LOG_LEVEL = env_str("WERKZEUG_LOG_LEVEL", "WARNING")
    SENTRY_DSN = env_str("SENTRY_DSN")

    # Database
    SQLALCHEMY_DATABASE_URI = env_str("DATABASE_URL") or env_str("SQLALCHEMY_DATABASE_URI", "sqlite:///diocese-dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = env_flag("AUTO_CREATE_SQLITE", True)

    # Gateways
    GATEWAY_TIMEOUT_SECONDS = env_int("GATEWAY_TIMEOUT_SECONDS", 25)
    MERCADOPAGO_API_BASE = base_url("MERCADOPAGO_API_BASE") or "https://api.mercadopago.com"
    MERCADOPAGO_NOTIFICATION_URL = env_str("MERCADOPAGO_NOTIFICATION_URL", "")
    STRIPE_CURRENCY = (env_str("STRIPE_CURRENCY") or "brl").lower()

    # Receipts
    DONATION_RECEIPTS_ENABLED = env_flag("DONATION_RECEIPTS_ENABLED")
    MAIL_SERVER = env_str("MAIL_SERVER", "localhost")
    MAIL_PORT = env_int("MAIL_PORT", 25)
    MAIL_USE_TLS = env_flag("MAIL_USE_TLS")
    MAIL_USERNAME = env_str("MAIL_USERNAME")
    MAIL_PASSWORD = env_str("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = env_str("MAIL_DEFAULT_SENDER", "doacoes@diocese.local")

    # i18n
    BABEL_DEFAULT_LOCALE = env_str("BABEL_DEFAULT_LOCALE", "pt_BR")
    BABEL_SUPPORTED_LOCALES = ["pt_BR", "en"]

    @classmethod
    def init_app(cls, app) -> None:
        """Called by create_app() right after from_object()."""
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")
        if uri.startswith("sqlite"):
            # Webhooks and the checkout may hit the same file from different threads.
            engine_opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            engine_opts["connect_args"] = {**engine_opts.get("connect_args", {}), "check_same_thread": False}
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = "sqlite://"
    PUBLIC_BASE_URL = "https://diocese.test"
    DONATION_RECEIPTS_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    LOG_LEVEL = "WARNING"
    SENTRY_DSN = None


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    TRUST_PROXY = env_flag("TRUST_PROXY", True)

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # Refuse to boot with settings that would leak or break payments.
        if app.config.get("SECRET_KEY") in (None, "", "dev-change-me"):
            raise RuntimeError("SECRET_KEY must be set in production.")
        if str(app.config.get("PUBLIC_BASE_URL") or "").startswith("http://"):
            raise RuntimeError("PUBLIC_BASE_URL must use https:// in production (payment callbacks).")
        if app.config.get("DEBUG") or env_flag("FLASK_DEBUG"):
            raise RuntimeError("FLASK_DEBUG must be off in production.")
