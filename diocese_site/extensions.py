import atexit
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import stripe
from flask_babel import Babel
from flask_cors import CORS
from flask_mail import Mail, Message
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.exc import OperationalError

log = logging.getLogger(__name__)

EMAIL_TEMPLATES = Path(__file__).resolve().parent / "templates" / "emails"

# ─────────────────────────────────────────────────────────────
# Extension singletons (bound in create_app)
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()
babel = Babel()
cors = CORS()

# ─────────────────────────────────────────────────────────────
# Fire-and-forget work (receipt e-mails)
# ─────────────────────────────────────────────────────────────
_pool = ThreadPoolExecutor(max_workers=int(os.getenv("BG_MAX_WORKERS", "2")), thread_name_prefix="diocese-bg")


def run_bg(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return _pool.submit(func, *args, **kwargs)


@atexit.register
def _stop_pool() -> None:
    _pool.shutdown(wait=False, cancel_futures=True)


# ─────────────────────────────────────────────────────────────
# SQLite lock retry
# ─────────────────────────────────────────────────────────────
def retry_on_db_lock(fn: Callable[[], Any], *, attempts: int = 5, backoff: float = 0.05) -> Any:
    """
    Run fn(); on SQLite "database is locked" roll back and try again.
    Anything else is rolled back and raised at once.
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except OperationalError as exc:
            db.session.rollback()
            locked = "database is locked" in str(exc).lower() or "sqlite_busy" in str(exc).lower()
            if not locked or attempt == attempts:
                raise
            log.info("sqlite locked, retry %s/%s", attempt, attempts - 1)
            time.sleep(backoff * attempt)
        except Exception:
            db.session.rollback()
            raise


# ─────────────────────────────────────────────────────────────
# E-mail
# ─────────────────────────────────────────────────────────────
_mail_templates = Environment(
    loader=FileSystemLoader(str(EMAIL_TEMPLATES)),
    autoescape=select_autoescape(["html"]),
)


def render_email(template: Optional[str], context: Dict[str, Any]) -> Optional[str]:
    return _mail_templates.get_template(template).render(**context) if template else None


def send_email_async(
    app: Any,
    subject: str,
    recipients: List[str],
    *,
    html_template: Optional[str] = None,
    text_template: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    sender: Optional[str] = None,
    attempts: int = 3,
) -> Future:
    """
    Render now (so template errors surface in the caller), send on the pool.
    The future resolves to True when the message went out.
    """
    ctx = context or {}
    msg = Message(
        subject=subject,
        recipients=list(recipients),
        sender=sender or app.config.get("MAIL_DEFAULT_SENDER"),
        html=render_email(html_template, ctx),
        body=render_email(text_template, ctx),
    )

    def _deliver() -> bool:
        with app.app_context():
            for attempt in range(1, attempts + 1):
                try:
                    mail.send(msg)
                    return True
                except Exception as exc:
                    if attempt == attempts:
                        app.logger.error("mail to %s failed after %s attempts: %s", recipients, attempts, exc)
                        return False
                    app.logger.warning("mail to %s failed (attempt %s): %s", recipients, attempt, exc)
                    time.sleep(0.5 * attempt)
        return False

    return run_bg(_deliver)


# ─────────────────────────────────────────────────────────────
# Stripe SDK transport
# ─────────────────────────────────────────────────────────────
def init_stripe(app: Any) -> None:
    """
    Bounded timeout and no SDK-level retries: a charge is never re-sent
    server-side. API keys are passed per call from gateway_settings.
    """
    timeout = int(app.config.get("GATEWAY_TIMEOUT_SECONDS") or 25)
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    stripe.max_network_retries = 0
    app.logger.debug("stripe transport: timeout=%ss retries=0", timeout)


__all__ = [
    "db",
    "migrate",
    "mail",
    "babel",
    "cors",
    "run_bg",
    "retry_on_db_lock",
    "render_email",
    "send_email_async",
    "init_stripe",
]
