"""
Stripe payment intents and the payment confirmation bridge.
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel
from pymongo.database import Database

import notifications
import settings
from database import now, parse_object_id, serialize, to_object_id
from errors import Forbidden, InvalidInput, NotFound, PaymentIncomplete, PaymentProviderError
from notifications import Notifier

logger = logging.getLogger("aynwine.payments")


class PaymentIntentInfo(BaseModel):
    id: str
    status: str
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = {}


def _plain(obj: Any) -> Dict[str, Any]:
    # StripeObject stopped subclassing dict in stripe 15
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _info(intent: Any) -> PaymentIntentInfo:
    data = _plain(intent)
    return PaymentIntentInfo(
        id=data["id"],
        status=data["status"],
        client_secret=data.get("client_secret"),
        metadata={k: str(v) for k, v in _plain(data.get("metadata")).items()},
    )


class StripeGateway:
    """Thin wrapper over the Stripe API using an explicit key per call."""

    def __init__(self, api_key: Optional[str] = settings.STRIPE_SECRET,
                 currency: str = settings.PRIMARY_CURRENCY,
                 webhook_secret: Optional[str] = settings.STRIPE_WEBHOOK_SECRET):
        self.api_key = api_key
        self.currency = currency.lower()
        self.webhook_secret = webhook_secret

    def create_intent(self, amount_cents: int, order_id: Optional[str] = None) -> PaymentIntentInfo:
        self._require_key()
        metadata = {"order_id": order_id} if order_id else {}
        try:
            intent = stripe.PaymentIntent.create(amount=amount_cents, currency=self.currency,
                                                 metadata=metadata, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise PaymentProviderError(exc.user_message or str(exc))
        return _info(intent)

    def retrieve_intent(self, intent_id: str) -> PaymentIntentInfo:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise PaymentProviderError(exc.user_message or str(exc))
        return _info(intent)

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            if self.webhook_secret:
                event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            else:
                logger.warning("STRIPE_WEBHOOK_SECRET not set; accepting unsigned webhook payload")
                event = stripe.Event.construct_from(json.loads(payload), self.api_key)
        except (ValueError, stripe.SignatureVerificationError):
            raise InvalidInput("Invalid payload")
        data = _plain(event)
        return {"type": data["type"], "object": _plain(_plain(data["data"])["object"])}

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentProviderError("Stripe not configured")


class PaymentService:
    def __init__(self, db: Database, gateway: Any, notifier: Optional[Notifier] = None):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier

    def create_intent(self, user_id: str, amount: Any, order_id: Optional[str] = None) -> Dict[str, Any]:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 1:
            raise InvalidInput("Invalid amount")
        if order_id:
            order = self.db["order"].find_one({"_id": to_object_id(order_id, "Order")})
            if not order:
                raise NotFound("Order not found")
            if order.get("user_id") != user_id:
                raise Forbidden("Unauthorized")
            if round(amount * 100) != round(float(order.get("total", 0)) * 100):
                raise InvalidInput("Amount does not match order total")
        intent = self.gateway.create_intent(int(round(amount * 100)), order_id)
        logger.info("Payment intent %s created for order %s", intent.id, order_id or "-")
        return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}

    def confirm_payment(self, payment_intent_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Apply a succeeded intent to its order. Returns the order, or None when the intent names none."""
        if not payment_intent_id:
            raise InvalidInput("Payment intent ID required")
        intent = self.gateway.retrieve_intent(payment_intent_id)
        if intent.status != "succeeded":
            raise PaymentIncomplete()
        return self.apply_succeeded(intent)

    def handle_event(self, event: Dict[str, Any]) -> None:
        """Apply a webhook event. The intent is re-read from Stripe, so the payload itself is never trusted."""
        if event["type"] != "payment_intent.succeeded":
            logger.debug("Ignoring Stripe event %s", event["type"])
            return
        claimed = event["object"]
        if claimed.get("status") != "succeeded" or not claimed.get("id"):
            logger.warning("Ignoring payment_intent.succeeded event with status %s", claimed.get("status"))
            return
        intent = self.gateway.retrieve_intent(claimed["id"])
        if intent.status != "succeeded":
            logger.warning("Webhook claimed intent %s succeeded but Stripe reports %s", intent.id, intent.status)
            return
        self.apply_succeeded(intent)

    def apply_succeeded(self, intent: PaymentIntentInfo) -> Optional[Dict[str, Any]]:
        order_id = intent.metadata.get("order_id")
        if not order_id:
            logger.info("Payment intent %s carries no order id; nothing to update", intent.id)
            return None
        order = self.db["order"].find_one({"_id": to_object_id(order_id, "Order")})
        if not order:
            raise NotFound("Order not found")
        if order.get("payment_status") == "completed" and order.get("stripe_payment_intent_id") == intent.id:
            return serialize(order)

        update = {
            "payment_status": "completed",
            "stripe_payment_intent_id": intent.id,
            "updated_at": now(),
        }
        if order.get("status") == "cancelled":
            logger.warning("Payment %s succeeded for cancelled order %s; status left as cancelled", intent.id, order_id)
        else:
            update["status"] = "processing"
        self.db["order"].update_one({"_id": order["_id"]}, {"$set": update})
        order = self.db["order"].find_one({"_id": order["_id"]})
        logger.info("Payment %s confirmed for order %s", intent.id, order_id)

        self._send_confirmation(order)
        return serialize(order)

    def _send_confirmation(self, order: Dict[str, Any]) -> None:
        if not self.notifier:
            return
        user_oid = parse_object_id(order.get("user_id"))
        user = self.db["user"].find_one({"_id": user_oid}) if user_oid else None
        if not user:
            logger.warning("No user found for order %s; confirmation email skipped", order["_id"])
            return
        template = notifications.order_confirmation(str(order["_id"]), float(order["total"]), order["items"])
        self.notifier.send_quietly(user["email"], template["subject"], template["html"])
