"""
Tests for Notification Dispatch

Tests:
- Email / chat request payloads and auth headers
- Non-2xx responses and transport errors become failed results
- Dispatcher selection from settings
"""

import json

import httpx
import pytest

from customer_intel.automation.notifications import (
    HttpNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationChannel,
    NotificationMessage,
    create_dispatcher,
)
from customer_intel.core.config import Settings

MESSAGE = NotificationMessage(
    body="Hi Ada",
    subject="You left something behind",
    template="cart_reminder_1",
    data={"firstName": "Ada", "cartTotal": 150.0},
)


def http_settings(**overrides):
    values = {
        "enable_redis": False,
        "email_api_url": "https://mail.test/send",
        "email_api_key": "mail-key",
        "email_sender": "shop@example.com",
        "chat_api_url": "https://chat.test/messages",
        "chat_api_token": "chat-token",
    }
    values.update(overrides)
    return Settings(**values)


def dispatcher_with(handler, settings=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpNotificationDispatcher(settings or http_settings(), http_client=client)


class TestHttpDispatcher:
    """Test HTTP delivery"""

    @pytest.mark.asyncio
    async def test_email_payload(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(202, json={"id": "msg-123"})

        dispatcher = dispatcher_with(handler)
        result = await dispatcher.send(NotificationChannel.EMAIL, "ada@example.com", MESSAGE)
        await dispatcher.close()

        assert result.success
        assert result.provider_id == "msg-123"

        request = requests[0]
        assert str(request.url) == "https://mail.test/send"
        assert request.headers["Authorization"] == "Bearer mail-key"
        assert json.loads(request.content) == {
            "to": "ada@example.com",
            "from": "shop@example.com",
            "subject": "You left something behind",
            "template": "cart_reminder_1",
            "data": {"firstName": "Ada", "cartTotal": 150.0},
            "body": "Hi Ada",
        }

    @pytest.mark.asyncio
    async def test_chat_payload(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text="ok")

        dispatcher = dispatcher_with(handler)
        result = await dispatcher.send(NotificationChannel.CHAT, "+15550100", MESSAGE)

        assert result.success
        assert result.provider_id is None
        assert requests[0].headers["Authorization"] == "Bearer chat-token"
        assert json.loads(requests[0].content) == {"to": "+15550100", "message": "Hi Ada"}

    @pytest.mark.asyncio
    async def test_error_status_is_failure(self):
        dispatcher = dispatcher_with(lambda request: httpx.Response(503, text="unavailable"))

        result = await dispatcher.send(NotificationChannel.EMAIL, "ada@example.com", MESSAGE)

        assert not result.success
        assert result.error.startswith("HTTP 503")

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = dispatcher_with(handler)
        result = await dispatcher.send(NotificationChannel.EMAIL, "ada@example.com", MESSAGE)

        assert not result.success
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_channel(self):
        requests = []
        dispatcher = dispatcher_with(
            lambda request: requests.append(request) or httpx.Response(200),
            settings=http_settings(chat_api_url=None),
        )

        result = await dispatcher.send(NotificationChannel.CHAT, "+15550100", MESSAGE)

        assert not result.success
        assert result.error == "No endpoint configured for chat"
        assert result.retryable is False
        assert requests == []


class TestCreateDispatcher:
    """Test dispatcher selection"""

    @pytest.mark.asyncio
    async def test_http_when_endpoint_configured(self):
        dispatcher = create_dispatcher(http_settings())
        assert isinstance(dispatcher, HttpNotificationDispatcher)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_logging_dispatcher_without_endpoints(self):
        dispatcher = create_dispatcher(http_settings(email_api_url=None, chat_api_url=None))

        assert isinstance(dispatcher, LoggingNotificationDispatcher)
        result = await dispatcher.send(NotificationChannel.EMAIL, "ada@example.com", MESSAGE)
        assert result.success
