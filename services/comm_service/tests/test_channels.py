import json
import smtplib
import httpx
import pytest

from comm_service.channels.base import ConfirmationActions
from comm_service.channels.email import EmailChannel, render_html
from comm_service.channels.registry import OperatorDirectory
from comm_service.channels.telegram import TelegramChannel
from comm_service.schemas.common import Channel, Recipient


def telegram_with(handler):
    calls = []

    def recorder(request):
        calls.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return TelegramChannel("bot-token", client=client), calls


@pytest.mark.asyncio
async def test_telegram_prompt_carries_inline_keyboard():
    channel, calls = telegram_with(lambda r: httpx.Response(200, json={"ok": True, "result": {}}))

    result = await channel.deliver(
        "111", "Approve?", actions=ConfirmationActions(reference_id="cmd_1")
    )

    assert result.success is True
    assert str(calls[0].url) == "https://api.telegram.org/botbot-token/sendMessage"
    payload = json.loads(calls[0].content)
    assert payload["chat_id"] == 111
    buttons = payload["reply_markup"]["inline_keyboard"][0]
    assert [b["callback_data"] for b in buttons] == ["confirm:cmd_1", "reject:cmd_1"]


@pytest.mark.asyncio
async def test_telegram_api_error_becomes_failed_result():
    channel, _ = telegram_with(
        lambda r: httpx.Response(400, json={"ok": False, "description": "chat not found"})
    )

    result = await channel.deliver("111", "hello")

    assert result.success is False
    assert "chat not found" in result.error


@pytest.mark.asyncio
async def test_unconfigured_telegram_fails_without_network():
    result = await TelegramChannel(None).deliver("111", "hello")
    assert result.success is False
    assert result.error == "Telegram bot not configured"


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if password == "bad":
            raise smtplib.SMTPAuthenticationError(535, b"denied")

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


@pytest.mark.asyncio
async def test_email_prompt_includes_links(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    channel = EmailChannel("smtp.test", 587, "user", "pw", "noreply@test")
    actions = ConfirmationActions("cmd_1", "http://x/confirm", "http://x/reject")

    result = await channel.deliver("ops@example.com", "Approve?", subject="Confirm", actions=actions)

    assert result.success is True
    msg = FakeSMTP.sent[0]
    assert msg["To"] == "ops@example.com"
    assert msg["Subject"] == "Confirm"
    assert "http://x/confirm" in msg.get_body(("plain",)).get_content()


@pytest.mark.asyncio
async def test_email_transport_error_becomes_failed_result(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    channel = EmailChannel("smtp.test", 587, "user", "bad", "noreply@test")

    result = await channel.deliver("ops@example.com", "hello")

    assert result.success is False
    assert result.channel == "email"


@pytest.mark.asyncio
async def test_unconfigured_email_fails():
    result = await EmailChannel("smtp.test", 587, None, None, "noreply@test").deliver("a@b.co", "x")
    assert result.success is False


def test_html_body_escapes_text():
    html = render_html("Hi", "<b>1 & 2</b>", None)
    assert "&lt;b&gt;1 &amp; 2&lt;/b&gt;" in html


def test_operator_directory_routing():
    operators = OperatorDirectory(telegram_chat_ids=[111, 222], admin_email="ops@example.com")

    assert operators.recipients(Channel.TELEGRAM) == ["111", "222"]
    assert operators.recipients(Channel.EMAIL, "alice@example.com") == ["alice@example.com"]
    assert operators.recipients(Channel.EMAIL, "trading-bot") == ["ops@example.com"]
    assert OperatorDirectory().recipients(Channel.EMAIL) == []


def test_recipient_extraction():
    to = Recipient(telegram_chat_id=5, email=None)
    assert TelegramChannel("t").recipient_for(to) == "5"
    assert EmailChannel("h", 25, "u", "p", "f@x.io").recipient_for(to) is None
