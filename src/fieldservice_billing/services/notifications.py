"""Notification gateways.

HttpNotificationGateway posts to an email/SMS relay over HTTP.
LoggingNotificationGateway only logs; it is what the container wires when no
relay URL is configured.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import httpx

from fieldservice_billing.logging_config import get_logger
from fieldservice_billing.services.interfaces import DeliveryReceipt, NotificationGateway

logger = get_logger(__name__)


class HttpNotificationGateway(NotificationGateway):
    """Relay client.

    The relay accepts POST /email {to, subject, body, from_name} and
    POST /sms {to, body} and answers with {"id": "<provider message id>"}.
    Non-2xx responses become failed receipts; transport errors propagate as
    httpx exceptions for the dispatcher to record.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        sender_name: str = "Support Team",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = (
            client
            if client is not None
            else httpx.Client(base_url=base_url, timeout=timeout, headers=headers)
        )
        self._sender_name = sender_name

    def close(self) -> None:
        self._client.close()

    def send_email(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        return self._post(
            "/email",
            {"to": to, "subject": subject, "body": body, "from_name": self._sender_name},
        )

    def send_sms(self, to: str, body: str) -> DeliveryReceipt:
        return self._post("/sms", {"to": to, "body": body})

    def _post(self, path: str, payload: dict[str, Any]) -> DeliveryReceipt:
        r = self._client.post(path, json=payload)
        if 200 <= r.status_code < 300:
            message_id = None
            try:
                message_id = r.json().get("id")
            except ValueError:
                pass
            logger.debug("relay_accepted", path=path, message_id=message_id)
            return DeliveryReceipt(success=True, message_id=message_id)

        try:
            detail = r.json().get("error") or r.text
        except ValueError:
            detail = r.text
        logger.warning("relay_rejected", path=path, status_code=r.status_code, detail=detail)
        return DeliveryReceipt(
            success=False, error=f"relay returned {r.status_code}: {detail}"
        )


class LoggingNotificationGateway(NotificationGateway):
    """Development gateway that records what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    def send_email(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        message_id = f"log-{uuid4().hex[:12]}"
        self.sent.append({"channel": "email", "to": to, "subject": subject, "body": body})
        logger.info("email_logged", to=to, subject=subject, message_id=message_id)
        return DeliveryReceipt(success=True, message_id=message_id)

    def send_sms(self, to: str, body: str) -> DeliveryReceipt:
        message_id = f"log-{uuid4().hex[:12]}"
        self.sent.append({"channel": "sms", "to": to, "body": body})
        logger.info("sms_logged", to=to, message_id=message_id)
        return DeliveryReceipt(success=True, message_id=message_id)
