import json
from datetime import datetime, timezone
from typing import Optional

import stripe
from psycopg2.extras import RealDictCursor

from api.config import STRIPE_PRO_PRICE_ID, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from api.events import log_billing_event
from api.notifications import notify_user

WEBHOOK_TOLERANCE_SEC = 300
PRO_STATUSES = ("active", "trialing")

PRODUCTS = [
    {
        "price_id": STRIPE_PRO_PRICE_ID,
        "name": "TrueNorth Pro",
        "description": "Unlock advanced features and personalized spiritual guidance",
        "mode": "subscription",
        "features": [
            "Unlimited AI conversations",
            "Advanced prayer tracking",
            "Personalized reading plans",
            "Scripture memory system",
            "Spiritual habit tracking",
            "Sermon transcription and summaries",
            "Natural voice scripture audio",
            "Premium content library",
            "Priority support",
        ],
    }
]

BILLING_MESSAGES = {
    "subscription_active": (
        "Subscription Active",
        "Your TrueNorth Pro subscription is now active! Enjoy all the premium features.",
    ),
    "payment_successful": ("Payment Successful", "Your payment was successful. Thank you for your purchase!"),
    "subscription_updated": ("Subscription Updated", "Your subscription details have been updated."),
    "subscription_cancelled": (
        "Subscription Cancelled",
        "Your TrueNorth Pro subscription has been cancelled. We hope to see you again soon.",
    ),
    "payment_renewed": ("Subscription Renewed", "Your TrueNorth Pro subscription has been renewed. Thank you!"),
    "payment_failed": (
        "Payment Failed",
        "We couldn't process your latest payment. Please update your payment method.",
    ),
}


class BillingError(Exception):
    pass


def stripe_enabled() -> bool:
    return bool(STRIPE_SECRET_KEY)


def _client_ready() -> None:
    if not STRIPE_SECRET_KEY:
        raise BillingError("not_configured")
    stripe.api_key = STRIPE_SECRET_KEY


def get_product(price_id: str) -> Optional[dict]:
    for product in PRODUCTS:
        if product["price_id"] == price_id:
            return product
    return None


def _as_dict(obj) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


def _ts(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def get_customer_id(conn, user_id: str) -> Optional[str]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT customer_id
            FROM stripe_customers
            WHERE user_id = %s AND deleted_at IS NULL
            """,
            (user_id,),
        )
        row = cur.fetchone()
    return row["customer_id"] if row else None


def get_user_for_customer(conn, customer_id: str) -> Optional[str]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id
            FROM stripe_customers
            WHERE customer_id = %s AND deleted_at IS NULL
            """,
            (customer_id,),
        )
        row = cur.fetchone()
    return row["user_id"] if row else None


def get_or_create_customer(conn, user_id: str, email: str | None) -> str:
    customer_id = get_customer_id(conn, user_id)
    if customer_id:
        return customer_id
    _client_ready()
    customer = stripe.Customer.create(email=email, metadata={"user_id": user_id})
    customer_id = customer["id"]
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO stripe_customers (user_id, customer_id)
            VALUES (%s, %s)
            """,
            (user_id, customer_id),
        )
        cur.execute(
            """
            INSERT INTO stripe_subscriptions (customer_id, status)
            VALUES (%s, 'not_started')
            ON CONFLICT (customer_id) DO NOTHING
            """,
            (customer_id,),
        )
    log_billing_event("stripe_customer_created", {"user_id": user_id})
    return customer_id


def create_checkout_session(
    conn,
    user: dict,
    price_id: str,
    success_url: str,
    cancel_url: str,
    mode: str = "subscription",
) -> dict:
    _client_ready()
    customer_id = get_or_create_customer(conn, user["user_id"], user.get("email"))
    session = stripe.checkout.Session.create(
        customer=customer_id,
        payment_method_types=["card"],
        line_items=[{"price": price_id, "quantity": 1}],
        mode=mode,
        success_url=success_url,
        cancel_url=cancel_url,
        allow_promotion_codes=True,
        billing_address_collection="auto",
        client_reference_id=user["user_id"],
        metadata={"user_id": user["user_id"]},
    )
    log_billing_event("stripe_checkout_created", {"user_id": user["user_id"], "mode": mode})
    return {"session_id": session["id"], "url": session["url"]}


def create_portal_session(conn, user_id: str, return_url: str) -> Optional[str]:
    customer_id = get_customer_id(conn, user_id)
    if not customer_id:
        return None
    _client_ready()
    session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
    return session["url"]


def get_subscription(conn, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT s.subscription_id, s.price_id, s.status, s.current_period_start,
                   s.current_period_end, s.cancel_at_period_end,
                   s.payment_method_brand, s.payment_method_last4
            FROM stripe_customers c
            JOIN stripe_subscriptions s ON s.customer_id = c.customer_id
            WHERE c.user_id = %s AND c.deleted_at IS NULL AND s.deleted_at IS NULL
            ORDER BY s.updated_at DESC
            LIMIT 1
            """,
            (user_id,),
        )
        row = cur.fetchone()
    if not row:
        return {"status": "not_started", "is_pro": False}
    row["is_pro"] = row.get("status") in PRO_STATUSES
    return row


def is_pro(conn, user_id: str) -> bool:
    return bool(get_subscription(conn, user_id).get("is_pro"))


def verify_webhook(payload: bytes, signature: str | None) -> dict:
    """Check the Stripe-Signature header and return the event as plain data."""
    if not signature:
        raise stripe.SignatureVerificationError("missing signature", signature, payload)
    if not STRIPE_WEBHOOK_SECRET:
        raise BillingError("not_configured")
    text = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(text, signature, STRIPE_WEBHOOK_SECRET, WEBHOOK_TOLERANCE_SEC)
    return json.loads(text)


def _first_item(subscription: dict) -> dict:
    items = ((subscription.get("items") or {}).get("data")) or []
    return items[0] if items else {}


def _card_details(subscription: dict) -> tuple[Optional[str], Optional[str]]:
    method = subscription.get("default_payment_method")
    if isinstance(method, dict):
        card = method.get("card") or {}
        return card.get("brand"), card.get("last4")
    return None, None


def upsert_subscription(conn, customer_id: str, subscription: dict) -> None:
    item = _first_item(subscription)
    brand, last4 = _card_details(subscription)
    # newer API versions report billing periods on the subscription item
    period_start = subscription.get("current_period_start") or item.get("current_period_start")
    period_end = subscription.get("current_period_end") or item.get("current_period_end")
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO stripe_subscriptions
              (customer_id, subscription_id, price_id, status, current_period_start,
               current_period_end, cancel_at_period_end, payment_method_brand, payment_method_last4)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (customer_id)
            DO UPDATE SET
              subscription_id = EXCLUDED.subscription_id,
              price_id = EXCLUDED.price_id,
              status = EXCLUDED.status,
              current_period_start = EXCLUDED.current_period_start,
              current_period_end = EXCLUDED.current_period_end,
              cancel_at_period_end = EXCLUDED.cancel_at_period_end,
              payment_method_brand = COALESCE(EXCLUDED.payment_method_brand, stripe_subscriptions.payment_method_brand),
              payment_method_last4 = COALESCE(EXCLUDED.payment_method_last4, stripe_subscriptions.payment_method_last4),
              updated_at = now()
            """,
            (
                customer_id,
                subscription.get("id"),
                (item.get("price") or {}).get("id"),
                subscription.get("status"),
                _ts(period_start),
                _ts(period_end),
                bool(subscription.get("cancel_at_period_end")),
                brand,
                last4,
            ),
        )


def set_subscription_status(conn, customer_id: str, status: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE stripe_subscriptions
            SET status = %s, updated_at = now()
            WHERE customer_id = %s
            """,
            (status, customer_id),
        )


def fetch_subscription(subscription_id: str) -> dict:
    _client_ready()
    return _as_dict(stripe.Subscription.retrieve(subscription_id, expand=["default_payment_method"]))


def record_order(conn, session: dict) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO stripe_orders
              (checkout_session_id, payment_intent_id, customer_id, amount_subtotal,
               amount_total, currency, payment_status, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'completed')
            ON CONFLICT (checkout_session_id) DO NOTHING
            """,
            (
                session.get("id"),
                session.get("payment_intent"),
                session.get("customer"),
                session.get("amount_subtotal"),
                session.get("amount_total"),
                session.get("currency"),
                session.get("payment_status"),
            ),
        )


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    parent = invoice.get("parent") or {}
    return (parent.get("subscription_details") or {}).get("subscription")


def _notify(conn, user_id: Optional[str], key: str) -> None:
    if not user_id:
        return
    title, message = BILLING_MESSAGES[key]
    notify_user(conn, user_id, "billing", title=title, message=message)


def handle_webhook_event(conn, event: dict) -> str:
    """Apply one webhook event; returns the name of the action taken."""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    customer_id = obj.get("customer")
    if not customer_id:
        return "ignored"

    if event_type == "checkout.session.completed":
        user_id = (obj.get("metadata") or {}).get("user_id") or get_user_for_customer(conn, customer_id)
        if obj.get("mode") == "subscription" and obj.get("subscription"):
            upsert_subscription(conn, customer_id, fetch_subscription(obj["subscription"]))
            _notify(conn, user_id, "subscription_active")
            return "subscription_synced"
        if obj.get("mode") == "payment" and obj.get("payment_status") == "paid":
            record_order(conn, obj)
            _notify(conn, user_id, "payment_successful")
            return "order_recorded"
        return "ignored"

    user_id = get_user_for_customer(conn, customer_id)
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        subscription = obj
        if not isinstance(obj.get("default_payment_method"), dict) and obj.get("default_payment_method"):
            subscription = fetch_subscription(obj["id"])
        upsert_subscription(conn, customer_id, subscription)
        if event_type == "customer.subscription.updated":
            _notify(conn, user_id, "subscription_updated")
        return "subscription_synced"

    if event_type == "customer.subscription.deleted":
        set_subscription_status(conn, customer_id, "canceled")
        _notify(conn, user_id, "subscription_cancelled")
        return "subscription_canceled"

    if event_type == "invoice.payment_succeeded":
        subscription_id = _invoice_subscription_id(obj)
        if subscription_id:
            upsert_subscription(conn, customer_id, fetch_subscription(subscription_id))
        if not obj.get("billing_reason") or obj.get("billing_reason") == "subscription_cycle":
            _notify(conn, user_id, "payment_renewed")
        return "invoice_paid"

    if event_type == "invoice.payment_failed":
        set_subscription_status(conn, customer_id, "past_due")
        _notify(conn, user_id, "payment_failed")
        return "invoice_failed"

    return "ignored"
