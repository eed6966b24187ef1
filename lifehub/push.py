"""
Browser push delivery.

Delivery is best effort: every subscription gets one attempt, a failure is
logged and counted, and the loop moves on to the next subscription.
"""

import logging
from typing import Callable, Iterable, Optional, Tuple

import requests
from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid01
from py_vapid.utils import b64urlencode
from pywebpush import WebPushException, webpush

from .domain import PushSubscription

logger = logging.getLogger(__name__)

# Push services answer these for subscriptions the browser has dropped
EXPIRED_STATUSES = (404, 410)


def generate_vapid_keys() -> Tuple[str, str]:
    """Return a new ``(public_key, private_key)`` pair as base64url strings."""
    vapid = Vapid01()
    vapid.generate_keys()
    public_raw = vapid.public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    private_raw = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return b64urlencode(public_raw), b64urlencode(private_raw)


class DeliveryReport:
    """Outcome of one broadcast."""

    def __init__(self):
        self.sent = 0
        self.failed = 0
        self.expired = []

    def to_dict(self):
        return {"sent": self.sent, "failed": self.failed, "expired": list(self.expired)}


class NotificationRelay:
    """
    Hands notifications to the web-push transport, one subscription at a time.

    Args:
        vapid_private_key: Raw private key (base64url) used to sign VAPID claims
        subject: ``sub`` claim, a ``mailto:`` or ``https:`` contact
        ttl: Seconds the push service may hold an undelivered message
        transport: Callable with the ``pywebpush.webpush`` signature
    """

    def __init__(self, vapid_private_key: str, subject: str, ttl: int = 30,
                 transport: Optional[Callable] = None):
        self.vapid_private_key = vapid_private_key
        self.subject = subject
        self.ttl = ttl
        self.transport = transport or webpush

    def send(self, subscription: PushSubscription, payload: str):
        return self.transport(
            subscription_info=subscription.subscription_info(),
            data=payload,
            vapid_private_key=self.vapid_private_key,
            vapid_claims={"sub": self.subject},
            ttl=self.ttl,
        )

    def broadcast(self, subscriptions: Iterable[PushSubscription], payload: str) -> DeliveryReport:
        report = DeliveryReport()
        for subscription in subscriptions:
            try:
                response = self.send(subscription, payload)
            except WebPushException as e:
                report.failed += 1
                status = getattr(e.response, "status_code", None)
                if status in EXPIRED_STATUSES:
                    report.expired.append(subscription.endpoint)
                    logger.warning("Push subscription expired (%s): %s", status, subscription.endpoint)
                else:
                    logger.warning("Failed to send push to %s: %s", subscription.endpoint, e)
            except requests.RequestException as e:
                report.failed += 1
                logger.warning("Failed to send push to %s: %s", subscription.endpoint, e)
            except (ValueError, TypeError) as e:
                # undecodable keys fail during payload encryption
                report.failed += 1
                logger.warning("Cannot encrypt push for %s: %s", subscription.endpoint, e)
            else:
                report.sent += 1
                logger.info("Push sent to %s, status: %s", subscription.endpoint,
                            getattr(response, "status_code", "?"))
        return report


def print_vapid_keys():
    """Console entry point: print a fresh VAPID key pair."""
    public_key, private_key = generate_vapid_keys()
    print(f"Private: {private_key}")
    print(f"Public: {public_key}")


if __name__ == "__main__":
    print_vapid_keys()
