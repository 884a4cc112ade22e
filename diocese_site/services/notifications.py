# diocese_site/services/notifications.py
"""
Provider notifications -> one canonical shape.

Mercado Pago delivers the same event in three shapes:

  webhook  JSON  {"type": "payment", "action": "payment.updated", "data": {"id": "123"}, "id": 99, "live_mode": true}
  feed     JSON  {"topic": "payment", "resource": "123" | "https://api.mercadopago.com/v1/payments/123"}
  query    URL   ?type=payment&data.id=123   or   ?topic=payment&id=123

Business logic only ever sees a ``PaymentNotification``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

PAYMENT_TOPICS = {"payment", "payments"}


@dataclass(frozen=True)
class PaymentNotification:
    shape: str
    topic: str
    payment_id: Optional[str]
    action: Optional[str] = None
    event_id: Optional[str] = None
    live_mode: Optional[bool] = None

    @property
    def is_payment(self) -> bool:
        return self.topic in PAYMENT_TOPICS and bool(self.payment_id)

    @property
    def environment(self) -> Optional[str]:
        if self.live_mode is None:
            return None
        return "live" if self.live_mode else "test"


def _s(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _bool_or_none(v: Any) -> Optional[bool]:
    if v is None:
        return None
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes"}:
        return True
    if s in {"0", "false", "no"}:
        return False
    return None


def _id_from_resource(resource: Any) -> Optional[str]:
    s = _s(resource)
    if not s:
        return None
    # ".../v1/payments/123?x=y" -> "123"
    return s.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1] or None


def parse_mercadopago_notification(
    body: Optional[Mapping[str, Any]],
    args: Optional[Mapping[str, Any]] = None,
) -> Optional[PaymentNotification]:
    """None when neither the body nor the query string is a recognizable notification."""
    body = body if isinstance(body, Mapping) else {}
    args = args or {}

    data = body.get("data")
    if isinstance(data, Mapping) and _s(data.get("id")):
        action = _s(body.get("action"))
        topic = _s(body.get("type")) or (action.split(".", 1)[0] if action else None) or ""
        return PaymentNotification(
            shape="webhook",
            topic=topic.lower(),
            payment_id=_s(data.get("id")),
            action=action,
            event_id=_s(body.get("id")),
            live_mode=_bool_or_none(body.get("live_mode")),
        )

    if _s(body.get("topic")) and _s(body.get("resource")):
        return PaymentNotification(
            shape="feed",
            topic=str(body.get("topic")).strip().lower(),
            payment_id=_id_from_resource(body.get("resource")),
        )

    q_topic = _s(args.get("type")) or _s(args.get("topic"))
    q_id = _s(args.get("data.id")) or _s(args.get("id"))
    if q_topic and q_id:
        return PaymentNotification(shape="query", topic=q_topic.lower(), payment_id=q_id)

    return None


# ----------------------------
# Stripe
# ----------------------------
HANDLED_STRIPE_EVENTS = {
    "payment_intent.succeeded",
    "payment_intent.processing",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "charge.refunded",
}


@dataclass(frozen=True)
class StripeNotification:
    """Pointer to a PaymentIntent. The intent itself is always re-read from Stripe."""

    event_id: Optional[str]
    event_type: str
    intent_id: Optional[str]
    donation_id: Optional[str]
    livemode: Optional[bool] = None

    @property
    def handled(self) -> bool:
        return self.event_type in HANDLED_STRIPE_EVENTS

    @property
    def environment(self) -> Optional[str]:
        if self.livemode is None:
            return None
        return "live" if self.livemode else "test"


def parse_stripe_event(event: Mapping[str, Any]) -> StripeNotification:
    etype = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    if not isinstance(obj, Mapping):
        obj = {}
    metadata = obj.get("metadata") or {}

    # charge.* events carry the charge; the intent id is a field on it
    intent_id = obj.get("payment_intent") if etype.startswith("charge.") else obj.get("id")

    return StripeNotification(
        event_id=_s(event.get("id")),
        event_type=etype,
        intent_id=_s(intent_id),
        donation_id=_s(metadata.get("donation_id")) if isinstance(metadata, Mapping) else None,
        livemode=_bool_or_none(event.get("livemode")),
    )
