"""
Web push transport.

Delivers one JSON payload to one subscription endpoint with pywebpush and
classifies failures:
- PushGoneError: 404/410 from the push service; the endpoint will never work again
- PushDeliveryError: anything else (5xx, network, timeout); may succeed later

pywebpush is blocking (requests under the hood), so each send runs in a worker
thread; the dispatcher bounds how many run at once. A thread cannot be cancelled,
so the timeout handed to webpush is the real upper bound on a send; the
dispatcher's own per-attempt timeout only stops waiting for it.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from pywebpush import WebPushException, webpush

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = (404, 410)


class PushDeliveryError(Exception):
    """Transient delivery failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PushGoneError(PushDeliveryError):
    """The subscription endpoint no longer exists."""


class PushTransport(Protocol):
    async def send(self, subscription: Dict[str, Any], payload: str) -> None:
        ...


class WebPushTransport:
    def __init__(self, vapid_private_key: str, vapid_claims_email: str, timeout: float = 10.0):
        self.vapid_private_key = vapid_private_key.strip()
        self.vapid_claims_email = vapid_claims_email
        self.timeout = timeout

    async def send(self, subscription: Dict[str, Any], payload: str) -> None:
        await asyncio.to_thread(self._send_blocking, subscription, payload)

    def _send_blocking(self, subscription: Dict[str, Any], payload: str) -> None:
        subscription_info = {
            "endpoint": subscription["endpoint"],
            "keys": {
                "p256dh": subscription["p256dh_key"],
                "auth": subscription["auth_key"],
            },
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_claims_email},
                timeout=self.timeout,
            )
        except WebPushException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            if status_code in GONE_STATUS_CODES:
                raise PushGoneError(str(exc), status_code=status_code) from exc
            raise PushDeliveryError(str(exc), status_code=status_code) from exc
        except Exception as exc:
            raise PushDeliveryError(str(exc)) from exc


def build_push_transport(settings) -> Optional[WebPushTransport]:
    """Return a transport when VAPID keys are configured, else None (push disabled)."""
    if not (settings.VAPID_PUBLIC_KEY and (settings.VAPID_PRIVATE_KEY or "").strip()):
        logger.warning("VAPID keys not configured; push delivery disabled")
        return None
    return WebPushTransport(
        settings.VAPID_PRIVATE_KEY,
        settings.VAPID_CLAIMS_EMAIL,
        timeout=settings.PUSH_TIMEOUT_SEC,
    )
