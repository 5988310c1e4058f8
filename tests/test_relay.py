import asyncio
import json

import pytest

from toolhub.service.relay_service import RelayResult, RequestRelay


def reply_channels(calls):
    return [channel for channel in calls if channel.startswith("responses:")]


def responder(broker, status=200, body="ok", raw=None, times=1):
    """Answers every request envelope on the reply channel it names"""
    async def handle(message):
        envelope = json.loads(message)
        channel = f"responses:s1:{envelope['requestId']}"
        payload = raw if raw is not None else json.dumps({"status": status, "body": body})
        for _ in range(times):
            await broker.publish(channel, payload)
    return handle


async def test_reply_resolves_with_status_and_body(broker, logger):
    await broker.subscribe("requests:s1", responder(broker, status=201, body="created"))
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {"content-type": "application/json"}, "{}")

    assert result == RelayResult(201, "created")
    assert len(reply_channels(broker.unsubscribe_calls)) == 1
    assert reply_channels(broker.handlers) == []
    assert relay.pending_count == 0


async def test_envelope_carries_request(broker, logger):
    await broker.subscribe("requests:s1", responder(broker))
    relay = RequestRelay(broker, logger, timeout=1.0)

    await relay.relay("s1", "POST", "/message?sessionId=s1", {"x-trace": "abc"}, '{"a": 1}')

    [envelope] = broker.messages("requests:s1")
    assert envelope["url"] == "/message?sessionId=s1"
    assert envelope["method"] == "POST"
    assert envelope["headers"] == {"x-trace": "abc"}
    assert envelope["body"] == '{"a": 1}'
    assert broker.subscribe_calls[-1] == f"responses:s1:{envelope['requestId']}"


async def test_missing_session_never_touches_broker(broker, logger):
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay(None, "POST", "/message", {}, "{}")

    assert result == RelayResult(400, "No sessionId provided")
    assert broker.subscribe_calls == []
    assert broker.published == []


async def test_timeout_releases_reply_channel_once(broker, logger):
    relay = RequestRelay(broker, logger, timeout=0.05)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")

    assert result == RelayResult(408, "Request timed out")
    assert len(reply_channels(broker.unsubscribe_calls)) == 1
    assert relay.pending_count == 0


async def test_late_reply_after_timeout_is_dropped(broker, logger):
    relay = RequestRelay(broker, logger, timeout=0.05)
    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")
    [envelope] = broker.messages("requests:s1")

    receivers = await broker.publish(
        f"responses:s1:{envelope['requestId']}", json.dumps({"status": 200, "body": "late"})
    )

    assert result.status == 408
    assert receivers == 0


async def test_duplicate_replies_settle_once(broker, logger):
    await broker.subscribe("requests:s1", responder(broker, body="first", times=2))
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")
    await asyncio.sleep(0.01)

    assert result.body == "first"
    assert len(reply_channels(broker.unsubscribe_calls)) == 1


async def test_malformed_reply_is_internal_error(broker, logger):
    await broker.subscribe("requests:s1", responder(broker, raw="not json"))
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")

    assert result.status == 500
    assert result.body.startswith("Failed to parse response:")
    assert len(reply_channels(broker.unsubscribe_calls)) == 1


async def test_subscribe_failure_is_internal_error(broker, logger):
    broker.fail_subscribe = True
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")

    assert result.status == 500
    assert result.body.startswith("Internal server error:")
    assert broker.published == []
    assert relay.pending_count == 0


async def test_publish_failure_is_internal_error(broker, logger):
    broker.fail_publish = True
    relay = RequestRelay(broker, logger, timeout=1.0)

    result = await relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}")

    assert result.status == 500
    assert "connection lost" in result.body
    assert len(reply_channels(broker.unsubscribe_calls)) == 1
    assert reply_channels(broker.handlers) == []


async def test_caller_cancellation_releases_reply_channel(broker, logger):
    relay = RequestRelay(broker, logger, timeout=5.0)
    task = asyncio.create_task(relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}"))
    await asyncio.sleep(0.02)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert relay.pending_count == 0
    assert len(reply_channels(broker.unsubscribe_calls)) == 1
    assert reply_channels(broker.handlers) == []


async def test_cancellation_while_subscribing_leaves_nothing_behind(broker, logger):
    broker.subscribe_delay = 1.0
    relay = RequestRelay(broker, logger, timeout=0.1)
    task = asyncio.create_task(relay.relay("s1", "POST", "/message?sessionId=s1", {}, "{}"))
    await asyncio.sleep(0.02)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.15)

    assert relay.pending_count == 0
    assert reply_channels(broker.handlers) == []
    assert len(reply_channels(broker.unsubscribe_calls)) == 1
    assert broker.messages("requests:s1") == []
