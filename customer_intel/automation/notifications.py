"""
Notification Dispatch

Outbound channel for workflow actions. The engine only sees
NotificationDispatcher.send(channel, recipient, message) -> DispatchResult;
delivery retries are applied by the engine's RetryPolicy.

Implementations:
- HttpNotificationDispatcher: posts to the configured email / chat HTTP APIs
- LoggingNotificationDispatcher: logs instead of sending (local/dev)
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from customer_intel.core.config import Settings
from customer_intel.core.exceptions import DispatchError
from customer_intel.middleware.logging_config import get_logger, log_integration_call

logger = get_logger(__name__)


class NotificationChannel(str, Enum):
    EMAIL = "email"
    CHAT = "chat"


@dataclass(frozen=True)
class NotificationMessage:
    body: str
    subject: Optional[str] = None
    template: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    channel: NotificationChannel
    recipient: str
    provider_id: Optional[str] = None
    error: Optional[str] = None
    # False when another attempt cannot succeed (missing configuration)
    retryable: bool = True


class NotificationDispatcher(ABC):
    """Delivers a rendered message on one channel."""

    @abstractmethod
    async def send(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: NotificationMessage
    ) -> DispatchResult:
        ...

    async def close(self) -> None:
        return None


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs every message and reports success."""

    async def send(self, channel, recipient, message):
        logger.info(
            "notification_logged",
            channel=channel.value,
            recipient=recipient,
            subject=message.subject,
            template=message.template,
        )
        return DispatchResult(success=True, channel=channel, recipient=recipient)


class HttpNotificationDispatcher(NotificationDispatcher):
    """
    Email and chat delivery over HTTP.

    Email payload: {to, from, subject, template, data, body}
    Chat payload:  {to, message}
    Non-2xx responses and transport errors are failed results, never raised.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.dispatch_timeout_seconds)

    async def close(self):
        await self.http_client.aclose()

    def _request(self, channel: NotificationChannel, recipient: str, message: NotificationMessage):
        if channel == NotificationChannel.EMAIL:
            headers = {"Content-Type": "application/json"}
            if self.settings.email_api_key:
                headers["Authorization"] = f"Bearer {self.settings.email_api_key}"
            payload = {
                "to": recipient,
                "from": self.settings.email_sender,
                "subject": message.subject,
                "template": message.template,
                "data": message.data,
                "body": message.body,
            }
            return self._endpoint(channel, self.settings.email_api_url), payload, headers

        headers = {"Content-Type": "application/json"}
        if self.settings.chat_api_token:
            headers["Authorization"] = f"Bearer {self.settings.chat_api_token}"
        payload = {"to": recipient, "message": message.body}
        return self._endpoint(channel, self.settings.chat_api_url), payload, headers

    @staticmethod
    def _endpoint(channel: NotificationChannel, url: Optional[str]) -> str:
        if not url:
            raise DispatchError(f"No endpoint configured for {channel.value}", {"channel": channel.value})
        return url

    async def send(self, channel, recipient, message):
        try:
            url, payload, headers = self._request(channel, recipient, message)
        except DispatchError as e:
            logger.warning("notification_channel_unconfigured", channel=channel.value)
            return DispatchResult(
                success=False, channel=channel, recipient=recipient, error=e.message, retryable=False
            )

        start = time.perf_counter()
        try:
            response = await self.http_client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            log_integration_call(channel.value, "send", time.perf_counter() - start, success=False, error=str(e))
            return DispatchResult(success=False, channel=channel, recipient=recipient, error=str(e))

        duration = time.perf_counter() - start
        if response.is_success:
            log_integration_call(channel.value, "send", duration)
            provider_id = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                provider_id = body.get("id")
            return DispatchResult(success=True, channel=channel, recipient=recipient, provider_id=provider_id)

        error = f"HTTP {response.status_code}: {response.text[:200]}"
        log_integration_call(channel.value, "send", duration, success=False, error=error)
        return DispatchResult(success=False, channel=channel, recipient=recipient, error=error)


def create_dispatcher(settings: Settings) -> NotificationDispatcher:
    """HTTP dispatcher when any endpoint is configured, otherwise the logging one."""
    if settings.email_api_url or settings.chat_api_url:
        return HttpNotificationDispatcher(settings)
    logger.info("notification_dispatch_disabled", reason="no endpoints configured")
    return LoggingNotificationDispatcher()
