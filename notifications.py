"""
Email notifications.

``Notifier.send`` records every message in the ``email_log`` collection before
handing it to the mail transport, then marks the entry ``sent`` or ``failed``.
Send failures are raised to the caller; ``Notifier.send_quietly`` is the
best-effort variant used by registration, payment confirmation and contact.
"""
import logging
import smtplib
from html import escape
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database

import settings
from database import create_document, now
from schemas import EmailLog

logger = logging.getLogger("aynwine.notifications")

BUTTON_STYLE = (
    "display: inline-block; padding: 12px 24px; background-color: #722f37; "
    "color: white; text-decoration: none; border-radius: 4px;"
)


class SmtpMailer:
    """Delivers HTML mail through an SMTP relay."""

    def __init__(self, host: str = settings.EMAIL_HOST, port: int = settings.EMAIL_PORT,
                 user: Optional[str] = settings.EMAIL_USER, password: Optional[str] = settings.EMAIL_PASSWORD,
                 secure: bool = settings.EMAIL_SECURE, sender: str = settings.EMAIL_FROM, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure
        self.sender = sender
        self.timeout = timeout

    def deliver(self, to: str, subject: str, html: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        smtp_cls = smtplib.SMTP_SSL if self.secure else smtplib.SMTP
        with smtp_cls(self.host, self.port, timeout=self.timeout) as server:
            if not self.secure:
                server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)


class Notifier:
    def __init__(self, db: Database, mailer: Any):
        self.db = db
        self.mailer = mailer

    def send(self, to: str, subject: str, html: str) -> str:
        """Send one message and return its email_log id. Raises on delivery failure."""
        log_id = create_document(self.db, "email_log", EmailLog(to=to, subject=subject, body=html))
        try:
            self.mailer.deliver(to, subject, html)
        except Exception as exc:
            self._mark(log_id, {"status": "failed", "error": str(exc)})
            raise
        self._mark(log_id, {"status": "sent"})
        logger.info("Email sent to %s: %s", to, subject)
        return log_id

    def send_quietly(self, to: str, subject: str, html: str) -> Optional[str]:
        try:
            return self.send(to, subject, html)
        except Exception:
            logger.exception("Email to %s failed: %s", to, subject)
            return None

    def _mark(self, log_id: str, fields: Dict[str, Any]) -> None:
        self.db["email_log"].update_one({"_id": ObjectId(log_id)}, {"$set": fields | {"updated_at": now()}})


# Email templates
def welcome(name: str, frontend_url: str = settings.FRONTEND_URL) -> Dict[str, str]:
    name = escape(name)
    return {
        "subject": f"Welcome to {settings.STORE_NAME}!",
        "html": f"""
      <h1>Welcome to {settings.STORE_NAME}!</h1>
      <p>Hello {name},</p>
      <p>Thank you for creating an account with us. We're excited to have you!</p>
      <p>Start exploring our premium wine and liquor collection.</p>
      <a href="{frontend_url}/products" style="{BUTTON_STYLE}">Shop Now</a>
    """,
    }


def order_confirmation(order_id: str, total: float, items: List[Dict[str, Any]]) -> Dict[str, str]:
    lines = "".join(f"<li>{i['product_name']} x {i['quantity']}</li>" for i in items)
    return {
        "subject": f"Order Confirmation #{order_id}",
        "html": f"""
      <h1>Order Confirmed!</h1>
      <p>Your order has been received and is being processed.</p>
      <h2>Order Details</h2>
      <p><strong>Order ID:</strong> {order_id}</p>
      <p><strong>Total:</strong> ${total:.2f}</p>
      <h3>Items:</h3>
      <ul>{lines}</ul>
      <p>You'll receive a shipping confirmation email when your order ships.</p>
    """,
    }


def order_shipped(order_id: str, tracking_number: str, frontend_url: str = settings.FRONTEND_URL) -> Dict[str, str]:
    return {
        "subject": f"Your Order #{order_id} Has Shipped",
        "html": f"""
      <h1>Your Order Has Shipped!</h1>
      <p>Your order is on its way.</p>
      <p><strong>Order ID:</strong> {order_id}</p>
      <p><strong>Tracking Number:</strong> {tracking_number}</p>
      <a href="{frontend_url}/orders/{order_id}" style="{BUTTON_STYLE}">Track Order</a>
    """,
    }


def contact_support(name: str, email: str, message: str) -> Dict[str, str]:
    name, email = escape(name), escape(email)
    body = escape(message).replace("\n", "<br>")
    return {
        "subject": f"Contact Form: {name}",
        "html": f"""
      <h2>New Contact Form Submission</h2>
      <p><strong>From:</strong> {name} ({email})</p>
      <p><strong>Message:</strong></p>
      <p>{body}</p>
      <hr>
      <p><small>Reply directly to {email}</small></p>
    """,
    }


def contact_receipt(name: str, message: str) -> Dict[str, str]:
    name = escape(name)
    body = escape(message).replace("\n", "<br>")
    return {
        "subject": f"We received your message - {settings.STORE_NAME}",
        "html": f"""
      <h2>Thank you for contacting us!</h2>
      <p>Hi {name},</p>
      <p>We have received your message and will get back to you as soon as possible.</p>
      <p><strong>Your message:</strong></p>
      <p>{body}</p>
      <hr>
      <p>Best regards,<br>The {settings.STORE_NAME} Team</p>
    """,
    }
