import asyncio
import re
from urllib.parse import parse_qs, urlparse

import pytest

from comm_service.core.exceptions import (
    AttemptsExceededError,
    InvalidTokenError,
    PayloadValidationError,
    VerificationDeliveryError,
    VerificationGoneError,
)
from comm_service.schemas.verification import VerificationStartRequest


def otp_request(**overrides):
    payload = {
        "method": "email",
        "purpose": "login",
        "to": {"email": "user@example.com"},
        "mode": "otp",
        "metadata": {"user_id": "u-1"},
    }
    payload.update(overrides)
    return VerificationStartRequest.model_validate(payload)


def sent_code(channel):
    return re.search(r"code is: (\d{6})", channel.sent[-1].text).group(1)


def sent_link_token(channel):
    url = re.search(r"(http\S+)", channel.sent[-1].text).group(1)
    return parse_qs(urlparse(url).query)["token"][0]


def wrong_code(code):
    return "100000" if code != "100000" else "100001"


@pytest.mark.asyncio
async def test_otp_is_delivered_and_stored_with_ttl(container, store, email):
    started = await container.verification.start(otp_request(ttl_seconds=120))

    assert started.verification_id.startswith("ver_")
    code = sent_code(email)
    assert len(code) == 6 and 100000 <= int(code) <= 999999
    assert email.sent[-1].recipient == "user@example.com"
    assert store.ttl(f"verification:{started.verification_id}") == pytest.approx(120)


@pytest.mark.asyncio
async def test_otp_confirms_once(container, store, email):
    started = await container.verification.start(otp_request())
    code = sent_code(email)

    result = await container.verification.confirm(started.verification_id, code)
    assert result.verified is True
    assert result.purpose == "login"
    assert result.metadata == {"user_id": "u-1"}
    assert await store.get(f"verification:{started.verification_id}:verified") == "true"

    with pytest.raises(VerificationGoneError):
        await container.verification.confirm(started.verification_id, code)

    status = await container.verification.status(started.verification_id)
    assert status.verified is True and status.pending is False


@pytest.mark.asyncio
async def test_concurrent_correct_confirms_have_one_winner(container, email):
    started = await container.verification.start(otp_request())
    code = sent_code(email)

    results = await asyncio.gather(
        container.verification.confirm(started.verification_id, code),
        container.verification.confirm(started.verification_id, code),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception) and r.verified) == 1
    assert sum(1 for r in results if isinstance(r, VerificationGoneError)) == 1


@pytest.mark.asyncio
async def test_third_wrong_attempt_burns_the_record(container, store, email):
    started = await container.verification.start(otp_request())
    code = sent_code(email)
    vid = started.verification_id

    for _ in range(2):
        with pytest.raises(InvalidTokenError):
            await container.verification.confirm(vid, wrong_code(code))
    assert await store.get(f"verification:{vid}:attempts") == "2"

    with pytest.raises(AttemptsExceededError) as excinfo:
        await container.verification.confirm(vid, wrong_code(code))
    assert excinfo.value.status_code == 429

    assert not await store.exists(f"verification:{vid}")
    assert not await store.exists(f"verification:{vid}:attempts")
    with pytest.raises(VerificationGoneError):
        await container.verification.confirm(vid, code)


@pytest.mark.asyncio
async def test_expired_verification_is_gone(container, clock, email):
    started = await container.verification.start(otp_request(ttl_seconds=60))
    code = sent_code(email)

    clock.advance(60)

    with pytest.raises(VerificationGoneError) as excinfo:
        await container.verification.confirm(started.verification_id, code)
    assert excinfo.value.status_code == 410


@pytest.mark.asyncio
async def test_magic_link_over_telegram(container, telegram):
    request = otp_request(method="telegram", mode="magic_link", to={"telegram_chat_id": 42})
    started = await container.verification.start(request)

    assert telegram.sent[-1].recipient == "42"
    assert "/api/v1/verification/magic-link?token=" in telegram.sent[-1].text
    token = sent_link_token(telegram)

    result = await container.verification.confirm_magic_link(token)
    assert result.verified is True
    assert result.verification_id == started.verification_id


@pytest.mark.asyncio
async def test_magic_link_token_of_another_verification_is_rejected(container, telegram):
    request = otp_request(method="telegram", mode="magic_link", to={"telegram_chat_id": 42})
    first = await container.verification.start(request)
    first_token = sent_link_token(telegram)
    second = await container.verification.start(request)

    with pytest.raises(InvalidTokenError):
        await container.verification.confirm(second.verification_id, first_token)

    result = await container.verification.confirm(first.verification_id, first_token)
    assert result.verified is True


@pytest.mark.asyncio
async def test_forged_magic_link_is_invalid(container):
    with pytest.raises(InvalidTokenError):
        await container.verification.confirm_magic_link("not-a-jwt")


@pytest.mark.asyncio
async def test_missing_recipient_writes_no_state(container, store):
    request = otp_request(method="telegram", to={"email": "user@example.com"})

    with pytest.raises(PayloadValidationError):
        await container.verification.start(request)

    assert not [k for k in store.data if k.startswith("verification:")]


@pytest.mark.asyncio
async def test_failed_delivery_removes_record(container, store, email):
    email.fail = True

    with pytest.raises(VerificationDeliveryError) as excinfo:
        await container.verification.start(otp_request())

    assert excinfo.value.status_code == 502
    assert not [k for k in store.data if k.startswith("verification:")]


@pytest.mark.asyncio
async def test_status_of_unknown_verification(container):
    status = await container.verification.status("ver_unknown")
    assert status.verified is False and status.pending is False
