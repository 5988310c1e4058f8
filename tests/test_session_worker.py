import asyncio
import json
import logging

import pytest

from conftest import wait_until
from toolhub.service.session_registry import Session, SessionLogAdapter
from toolhub.service.session_worker import SessionWorker
from toolhub.service.tool_server import ToolServer


class StubTransport:
    def __init__(self, behaviour):
        self.behaviour = behaviour

    async def handle_post_message(self, request, response):
        await self.behaviour(request, response)


def make_session(behaviour, session_id="s1"):
    logger = SessionLogAdapter(logging.getLogger("tests"), {"session_id": session_id})
    return Session(
        session_id=session_id,
        server=ToolServer("stub", "0"),
        transport=StubTransport(behaviour),
        logger=logger,
    )


def envelope(request_id="r1", body="{}"):
    return json.dumps({
        "requestId": request_id,
        "url": "/message?sessionId=s1",
        "method": "POST",
        "body": body,
        "headers": {"content-type": "application/json"},
    })


@pytest.fixture
async def run_worker(broker):
    workers = []

    async def run(behaviour, message, handler_timeout=0.05):
        worker = SessionWorker(make_session(behaviour), broker, handler_timeout=handler_timeout)
        workers.append(worker)
        await worker.process_message(message)
        return broker.messages("responses:s1:r1")

    yield run
    for worker in workers:
        await worker.stop()


async def test_completed_response_is_published(run_worker):
    async def behaviour(request, response):
        assert await request.text() == '{"ping": true}'
        response.write_head(200).end("pong")

    published = await run_worker(behaviour, envelope(body='{"ping": true}'))

    assert published == [{"status": 200, "body": "pong"}]


async def test_timeout_after_status_keeps_status(run_worker):
    async def behaviour(request, response):
        response.write_head(201)
        await asyncio.sleep(10)

    published = await run_worker(behaviour, envelope())

    assert published == [{"status": 201, "body": "Handler timed out, but status was set"}]


async def test_timeout_without_status_is_gateway_timeout(run_worker):
    async def behaviour(request, response):
        await asyncio.sleep(10)

    published = await run_worker(behaviour, envelope())

    assert published == [{"status": 504, "body": "Handler timed out without setting status"}]


async def test_handler_returning_without_end_is_no_content(run_worker):
    async def behaviour(request, response):
        return None

    published = await run_worker(behaviour, envelope())

    assert published == [{"status": 204, "body": ""}]


async def test_handler_exception_is_contained(run_worker):
    async def behaviour(request, response):
        raise RuntimeError("boom")

    published = await run_worker(behaviour, envelope())

    assert published == [{"status": 500, "body": "Internal server error: boom"}]


async def test_malformed_envelope_with_request_id_gets_error(broker, run_worker):
    async def behaviour(request, response):
        response.end("unreachable")

    published = await run_worker(behaviour, json.dumps({"requestId": "r1"}))

    assert len(published) == 1
    assert published[0]["status"] == 500
    assert published[0]["body"].startswith("Internal server error:")


async def test_envelope_without_request_id_is_dropped(broker, run_worker):
    async def behaviour(request, response):
        response.end("unreachable")

    await run_worker(behaviour, "not json at all")

    assert broker.published == []


async def test_requests_are_processed_in_arrival_order(broker):
    seen = []

    async def behaviour(request, response):
        body = await request.text()
        # The first request is slower; it must still finish first
        await asyncio.sleep(0.03 if body == "first" else 0)
        seen.append(body)
        response.write_head(200).end(body)

    worker = SessionWorker(make_session(behaviour), broker, handler_timeout=1.0)
    await worker.start()
    try:
        await broker.publish("requests:s1", envelope("r1", "first"))
        await broker.publish("requests:s1", envelope("r2", "second"))
        await wait_until(lambda: len(broker.messages("responses:s1:r2")) == 1)
    finally:
        await worker.stop()

    assert seen == ["first", "second"]
    assert broker.messages("responses:s1:r1") == [{"status": 200, "body": "first"}]
    assert "requests:s1" in broker.unsubscribe_calls
