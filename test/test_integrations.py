import json
from types import SimpleNamespace

import pytest
import requests

from sealdesk.integrations import tasks as integration_tasks
from sealdesk.integrations.base import Integration, IntegrationError
from sealdesk.integrations.registry import IntegrationRegistry
from sealdesk.integrations.slack import SlackIntegration
from sealdesk.integrations.webhook import (
    EVENT_HEADER, SIGNATURE_HEADER, WebhookIntegration, compute_signature, send_webhook,
    verify_webhook_signature,
)
from test.config import SIGNER_A
from test.utils import RecordingIntegration, build_envelope

ENVELOPE = {"id": "env-1", "subject": "Lease renewal", "signer_count": 2, "void_reason": None}


class FakePost:
    """Stands in for requests.post and replays canned status codes"""

    def __init__(self, statuses=(200,), error=None):
        self.statuses = list(statuses)
        self.error = error
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return SimpleNamespace(ok=200 <= status < 300, status_code=status, text="")


class ExplodingIntegration(Integration):
    name = "exploding"

    def on_envelope_sent(self, envelope):
        raise IntegrationError(self.name, "endpoint down")


class QueuedDeliveries:
    """Stands in for the delivery task and keeps what was queued"""

    def __init__(self):
        self.calls = []

    def delay(self, *args):
        self.calls.append(args)


@pytest.fixture
def fake_post(monkeypatch):
    fake = FakePost()
    monkeypatch.setattr(requests, "post", fake)
    return fake


@pytest.fixture
def queued(monkeypatch):
    task = QueuedDeliveries()
    monkeypatch.setattr(integration_tasks, "deliver_webhook", task)
    return task


# === Webhook ===

def test_webhook_body_is_signed(queued):
    webhook = WebhookIntegration({"url": "https://hooks.example.com/sealdesk", "secret": "s3cret"})

    webhook.handle("envelope_sent", {"envelope": ENVELOPE})

    url, body, headers = queued.calls[0]
    assert url == "https://hooks.example.com/sealdesk"
    assert json.loads(body)["event"] == "envelope_sent"
    assert json.loads(body)["data"]["envelope"]["subject"] == "Lease renewal"
    assert headers[EVENT_HEADER] == "envelope_sent"
    signature = headers[SIGNATURE_HEADER]
    assert signature == compute_signature(body.encode("utf-8"), "s3cret")
    assert verify_webhook_signature(body.encode("utf-8"), signature, "s3cret") is True


def test_webhook_hooks_queue_instead_of_posting(queued, fake_post):
    webhook = WebhookIntegration({"url": "https://hooks.example.com/x"})

    webhook.handle("signer_completed", {"signer": {"email": SIGNER_A["email"]}, "envelope": ENVELOPE})

    assert fake_post.calls == []
    assert len(queued.calls) == 1


def test_verify_webhook_signature_rejects_tampering():
    body = b'{"event": "envelope_completed"}'
    signature = compute_signature(body, "s3cret")

    assert verify_webhook_signature(body + b" ", signature, "s3cret") is False
    assert verify_webhook_signature(body, signature, "other") is False
    assert verify_webhook_signature(body, "", "s3cret") is False
    assert verify_webhook_signature(body, signature, "") is False


def test_webhook_without_secret_is_unsigned(queued):
    WebhookIntegration({"url": "https://hooks.example.com/x"}).handle("envelope_voided", {"envelope": ENVELOPE})
    assert SIGNATURE_HEADER not in queued.calls[0][2]


def test_webhook_event_filter(queued):
    webhook = WebhookIntegration({"url": "https://hooks.example.com/x", "events": "envelope_completed"})

    webhook.handle("envelope_sent", {"envelope": ENVELOPE})
    assert queued.calls == []
    webhook.handle("envelope_completed", {"envelope": ENVELOPE})
    assert len(queued.calls) == 1


def test_delivery_task_posts_the_exact_body(fake_post):
    body, headers = WebhookIntegration({"url": "https://hooks.example.com/x", "secret": "s3cret"}).build_request(
        "envelope_completed", {"envelope": ENVELOPE},
    )

    result = integration_tasks.deliver_webhook.apply(args=("https://hooks.example.com/x", body, headers))

    assert result.get() == {"status_code": 200, "attempts": 1}
    url, kwargs = fake_post.calls[0]
    assert kwargs["data"] == body.encode("utf-8")
    assert kwargs["headers"][SIGNATURE_HEADER] == compute_signature(kwargs["data"], "s3cret")


def test_delivery_task_retries_then_fails(monkeypatch):
    fake = FakePost(statuses=(500, 502, 503))
    monkeypatch.setattr(requests, "post", fake)

    result = integration_tasks.deliver_webhook.apply(args=("https://hooks.example.com/x", "{}", {}))

    assert result.failed()
    assert isinstance(result.result, IntegrationError)
    assert len(fake.calls) == 3


def test_delivery_task_recovers_on_retry(monkeypatch):
    fake = FakePost(statuses=(503, 200))
    monkeypatch.setattr(requests, "post", fake)

    result = integration_tasks.deliver_webhook.apply(args=("https://hooks.example.com/x", "{}", {}))

    assert result.get() == {"status_code": 200, "attempts": 2}
    assert len(fake.calls) == 2


def test_send_webhook_wraps_connection_errors(monkeypatch):
    monkeypatch.setattr(requests, "post", FakePost(error=requests.ConnectionError("refused")))
    with pytest.raises(IntegrationError) as exc_info:
        send_webhook("https://hooks.example.com/x", "{}", {})
    assert "refused" in str(exc_info.value)


def test_webhook_requires_url():
    with pytest.raises(ValueError):
        WebhookIntegration({"secret": "x"})


# === Slack ===

def test_slack_message_text(fake_post):
    slack = SlackIntegration({"webhook_url": "https://hooks.slack.com/services/T/B/X", "channel": "#contracts"})

    slack.handle("signer_completed", {
        "signer": {"name": "Alice Sender", "email": SIGNER_A["email"]}, "envelope": ENVELOPE,
    })

    payload = fake_post.calls[0][1]["json"]
    assert payload["channel"] == "#contracts"
    assert "Alice Sender" in payload["text"]
    assert "*Lease renewal*" in payload["text"]


def test_slack_connection_failure(monkeypatch):
    monkeypatch.setattr(requests, "post", FakePost(error=requests.ConnectionError("refused")))
    slack = SlackIntegration({"webhook_url": "https://hooks.slack.com/services/T/B/X"})

    ok, message = slack.test_connection()
    assert ok is False
    assert "refused" in message


# === Registry ===

def test_failing_adapter_does_not_block_others():
    registry = IntegrationRegistry()
    recorder = registry.add(RecordingIntegration())
    registry.add(ExplodingIntegration())

    results = registry.dispatch("envelope_sent", {"envelope": ENVELOPE})

    assert results == {"recorder": True, "exploding": False}
    assert recorder.names() == ["envelope_sent"]


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError):
        IntegrationRegistry().dispatch("envelope_exploded", {})


def test_enable_and_disable():
    registry = IntegrationRegistry()
    registry.register(WebhookIntegration)

    with pytest.raises(KeyError):
        registry.enable("slack", {"webhook_url": "https://hooks.slack.com/x"})

    registry.enable("webhook", {"url": "https://hooks.example.com/x"})
    assert registry.list_available() == [{
        "name": "webhook", "display_name": "Webhook",
        "description": "POST signed JSON events to an HTTPS endpoint", "enabled": True,
    }]
    registry.disable("webhook")
    assert registry.get("webhook") is None
    assert registry.dispatch("envelope_sent", {"envelope": ENVELOPE}) == {}


def test_workflow_survives_failing_integration(service, registry, recorder):
    registry.add(ExplodingIntegration())
    envelope = service.create_envelope(build_envelope([SIGNER_A]))

    sent = service.send_envelope(envelope.id)

    assert sent.status == "sent"
    assert recorder.names() == ["envelope_sent"]
    payload = recorder.events[0][1]["envelope"]
    assert payload["subject"] == "Master services agreement"
    assert payload["signer_count"] == 1
