import json

import httpx
import pytest

from comm_service.channels.registry import ChannelRegistry
from comm_service.core.exceptions import (
    ConflictError,
    DispatchNotFoundError,
    PayloadValidationError,
)
from comm_service.schemas.commands import CommandDispatchRequest
from comm_service.schemas.common import Channel
from comm_service.services.container import build_container

from conftest import MemoryStore, RecordingChannel, make_settings


def command_request(**overrides):
    payload = {
        "service": "trading-service",
        "action": "strategy.pause",
        "args": {"strategy_id": "s-1"},
        "audit": {"requested_by": "ops@example.com", "trace_id": "trace-123"},
    }
    payload.update(overrides)
    return CommandDispatchRequest.model_validate(payload)


@pytest.mark.asyncio
async def test_trading_service_end_to_end(container, store, downstream):
    downstream.handler = lambda request: httpx.Response(200, json={"paused": True})

    accepted = await container.commands.dispatch(command_request())
    assert accepted.status == "queued"
    assert accepted.command_id.startswith("cmd_")

    await container.tasks.drain()

    assert len(downstream.requests) == 1
    sent = downstream.requests[0]
    assert str(sent.url) == "http://trading-service:3000/v1/commands/strategy.pause"
    assert json.loads(sent.content) == {"strategy_id": "s-1"}
    assert sent.headers["X-Command-Id"] == accepted.command_id
    assert sent.headers["X-Trace-Id"] == "trace-123"

    scheme, token = sent.headers["Authorization"].split(" ", 1)
    assert scheme == "Bearer"
    claims = container.tokens.verify(token, audience="trading-service")
    assert claims["scopes"] == ["command.execute"]

    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "completed"
    assert status.service == "trading-service"
    assert json.loads(await store.get(f"command:{accepted.command_id}:result")) == {"paused": True}

    audit = json.loads((await store.lrange("audit:commands", 0, -1))[0])
    assert audit["id"] == accepted.command_id
    assert audit["requested_by"] == "ops@example.com"
    assert await store.lrange("queue:commands:trading-service", 0, -1)


@pytest.mark.asyncio
async def test_unit_ttl_defaults_to_five_minutes(container, store):
    accepted = await container.commands.dispatch(command_request())
    assert store.ttl(f"command:{accepted.command_id}") == pytest.approx(300)
    await container.tasks.drain()


@pytest.mark.asyncio
async def test_gated_command_prompts_admins_and_waits(container, telegram, downstream):
    accepted = await container.commands.dispatch(command_request(require_confirmation=True))

    assert accepted.status == "pending_confirmation"
    assert [s.recipient for s in telegram.sent] == ["111", "222"]
    prompt = telegram.sent[0]
    assert "strategy.pause" in prompt.text
    assert prompt.actions.reference_id == accepted.command_id
    assert "/api/v1/commands/confirm?token=" in prompt.actions.confirm_url

    await container.tasks.drain()
    assert downstream.requests == []

    assert await container.confirmation.decide(accepted.command_id, True) == "queued"
    await container.tasks.drain()

    assert len(downstream.requests) == 1
    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "completed"


@pytest.mark.asyncio
async def test_email_prompt_goes_to_requester_with_links(container, email):
    request = command_request(require_confirmation=True, channel="email")

    accepted = await container.commands.dispatch(request)

    assert [s.recipient for s in email.sent] == ["ops@example.com"]
    actions = email.sent[0].actions
    assert "action=confirm" in actions.confirm_url
    assert "action=reject" in actions.reject_url
    assert actions.reference_id == accepted.command_id


@pytest.mark.asyncio
async def test_confirm_within_ttl_succeeds(container, clock):
    request = command_request(require_confirmation=True, routing={"ttl_seconds": 30})
    accepted = await container.commands.dispatch(request)

    clock.advance(29)

    assert await container.confirmation.decide(accepted.command_id, True) == "queued"
    await container.tasks.drain()


@pytest.mark.asyncio
async def test_confirm_after_ttl_is_not_found(container, clock, downstream):
    request = command_request(require_confirmation=True, routing={"ttl_seconds": 30})
    accepted = await container.commands.dispatch(request)

    clock.advance(31)

    with pytest.raises(DispatchNotFoundError) as excinfo:
        await container.confirmation.decide(accepted.command_id, True)
    assert excinfo.value.status_code == 404
    await container.tasks.drain()
    assert downstream.requests == []


@pytest.mark.asyncio
async def test_reject_is_terminal_and_second_decision_conflicts(container, downstream):
    accepted = await container.commands.dispatch(command_request(require_confirmation=True))

    assert await container.confirmation.decide(accepted.command_id, False) == "rejected"
    with pytest.raises(ConflictError):
        await container.confirmation.decide(accepted.command_id, True)

    await container.tasks.drain()
    assert downstream.requests == []
    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "rejected"


@pytest.mark.asyncio
async def test_magic_link_decision(container, telegram, downstream):
    accepted = await container.commands.dispatch(command_request(require_confirmation=True))
    confirm_url = telegram.sent[0].actions.confirm_url
    token = confirm_url.split("token=", 1)[1].split("&", 1)[0]

    assert await container.confirmation.decide_from_link(token, "confirm") == "queued"
    await container.tasks.drain()

    assert len(downstream.requests) == 1
    assert downstream.requests[0].headers["X-Command-Id"] == accepted.command_id


@pytest.mark.asyncio
async def test_failure_with_fallback_is_retried_exactly_once(container, store, downstream):
    downstream.handler = lambda request: httpx.Response(503, json={"error": "busy"})
    request = command_request(routing={"fallback": ["email"]})

    accepted = await container.commands.dispatch(request)
    await container.tasks.drain()

    assert len(downstream.requests) == 2
    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "failed"
    assert status.retry_count == 1
    assert "503" in await store.get(f"command:{accepted.command_id}:error")
    retries = await store.lrange("queue:retries", 0, -1)
    assert json.loads(retries[0])["command_id"] == accepted.command_id


@pytest.mark.asyncio
async def test_retry_recovers_transient_failure(container, store, downstream):
    responses = iter([httpx.Response(500), httpx.Response(200, json={"done": 1})])
    downstream.handler = lambda request: next(responses)

    accepted = await container.commands.dispatch(command_request(routing={"fallback": ["telegram"]}))
    await container.tasks.drain()

    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "completed"
    assert status.retry_count == 1
    assert status.error is None
    assert await store.get(f"command:{accepted.command_id}:error") is None


@pytest.mark.asyncio
async def test_failure_without_fallback_is_not_retried(container, downstream):
    downstream.handler = lambda request: httpx.Response(500)

    accepted = await container.commands.dispatch(command_request())
    await container.tasks.drain()

    assert len(downstream.requests) == 1
    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "failed"
    assert status.retry_count == 0


@pytest.mark.asyncio
async def test_unknown_service_fails_without_retry(container, store, downstream):
    request = command_request(service="weather-service", routing={"fallback": ["email"]})

    accepted = await container.commands.dispatch(request)
    await container.tasks.drain()

    assert downstream.requests == []
    status = await container.engine.get_status("command", accepted.command_id)
    assert status.status == "failed"
    assert "No URL configured" in status.error
    assert await store.lrange("queue:retries", 0, -1) == []


@pytest.mark.asyncio
async def test_gated_command_without_operators_is_rejected_at_intake():
    store = MemoryStore()
    registry = ChannelRegistry(
        {Channel.TELEGRAM: RecordingChannel("telegram"), Channel.EMAIL: RecordingChannel("email")}
    )
    container = build_container(
        make_settings(admins_telegram_ids="", admin_email=None), store=store, channels=registry
    )

    with pytest.raises(PayloadValidationError):
        await container.commands.dispatch(command_request(require_confirmation=True))
    assert store.data == {}


@pytest.mark.asyncio
async def test_minted_trace_id_is_shared_by_audit_and_retry(container, store, downstream):
    responses = iter([httpx.Response(503), httpx.Response(200, json={})])
    downstream.handler = lambda request: next(responses)

    accepted = await container.commands.dispatch(
        command_request(audit=None, routing={"fallback": ["telegram"]})
    )
    await container.tasks.drain()

    audit = json.loads((await store.lrange("audit:commands", 0, -1))[0])
    assert audit["trace_id"]
    assert [r.headers["X-Trace-Id"] for r in downstream.requests] == [audit["trace_id"]] * 2
    unit = await container.engine.load_unit("command", accepted.command_id)
    assert unit.trace_id == audit["trace_id"]
