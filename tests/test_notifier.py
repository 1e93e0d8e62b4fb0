"""Tests for the webhook notifier."""

import json

import httpx
import pytest

from pg_sync.config import Settings
from pg_sync.connectors.notifier import WebhookNotifier

URL = "https://hooks.example.com/pg-sync"


def recording_transport(status: int = 200) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, text="ok" if status < 400 else "nope")

    return httpx.MockTransport(handler), requests


class TestWebhookNotifier:
    """Test outcome delivery."""

    def test_posts_message(self) -> None:
        transport, requests = recording_transport()
        notifier = WebhookNotifier(URL, transport=transport)

        assert notifier.notify("Pipeline nightly succeeded") is True

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == URL
        assert json.loads(requests[0].content) == {"message": "Pipeline nightly succeeded"}

    def test_extra_fields(self) -> None:
        transport, requests = recording_transport()
        WebhookNotifier(URL, transport=transport).notify("done", tables=3)
        assert json.loads(requests[0].content) == {"message": "done", "tables": 3}

    def test_rejected(self) -> None:
        transport, _ = recording_transport(status=500)
        assert WebhookNotifier(URL, transport=transport).notify("x") is False

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = WebhookNotifier(URL, transport=httpx.MockTransport(handler))
        assert notifier.notify("x") is False

    def test_disabled_without_url(self, caplog: pytest.LogCaptureFixture) -> None:
        assert WebhookNotifier(None).notify("x") is False
        assert "No webhook URL" in caplog.text

    def test_from_settings(self) -> None:
        settings = Settings(notify={"webhook_url": URL, "timeout_seconds": 3})
        notifier = WebhookNotifier.from_settings(settings)
        assert notifier.url == URL
        assert notifier.timeout == 3
