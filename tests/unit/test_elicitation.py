import asyncio
from types import SimpleNamespace as NS

import pytest
from mcp import types

from mcpbridge.elicitation import ElicitationBroker

SCHEMA = {"type": "object", "properties": {"branch": {"type": "string"}}}


async def _wait_for_pending(broker):
    while not broker.pending():
        await asyncio.sleep(0)
    return broker.pending()[0]


@pytest.mark.asyncio
async def test_accept_resolves_request():
    broker = ElicitationBroker(timeout=5)
    request = asyncio.create_task(broker.request("Which branch?", SCHEMA))

    pending = await _wait_for_pending(broker)
    assert pending["message"] == "Which branch?"
    assert pending["id"].startswith("elicit-")

    assert broker.respond(pending["id"], "accept", {"branch": "main"})
    assert await request == {"action": "accept", "content": {"branch": "main"}}
    assert broker.pending() == []


@pytest.mark.asyncio
async def test_decline_drops_content():
    broker = ElicitationBroker(timeout=5)
    request = asyncio.create_task(broker.request("Which branch?", SCHEMA))
    pending = await _wait_for_pending(broker)

    broker.respond(pending["id"], "decline", {"branch": "main"})
    assert await request == {"action": "decline"}


@pytest.mark.asyncio
async def test_timeout_declines():
    broker = ElicitationBroker(timeout=0.01)
    assert await broker.request("Which branch?", SCHEMA) == {"action": "decline"}
    assert broker.pending() == []


@pytest.mark.asyncio
async def test_invalid_request():
    with pytest.raises(ValueError):
        await ElicitationBroker().request("", SCHEMA)
    with pytest.raises(ValueError):
        await ElicitationBroker().request("Which?", {})


def test_unknown_id():
    assert ElicitationBroker().respond("elicit-missing", "cancel") is False


def test_invalid_action():
    with pytest.raises(ValueError, match="accept, decline, or cancel"):
        ElicitationBroker().respond("elicit-1", "maybe")


class TestElicitationCallback:
    @pytest.mark.asyncio
    async def test_accept_answered_through_broker(self):
        broker = ElicitationBroker(timeout=5)
        params = NS(message="Which branch?", requestedSchema=SCHEMA)
        callback = asyncio.create_task(broker.elicitation_callback(None, params))

        pending = await _wait_for_pending(broker)
        broker.respond(pending["id"], "accept", {"branch": "main"})
        result = await callback

        assert isinstance(result, types.ElicitResult)
        assert result.action == "accept"
        assert result.content == {"branch": "main"}

    @pytest.mark.asyncio
    async def test_timeout_declines(self):
        broker = ElicitationBroker(timeout=0.01)
        params = NS(message="Which branch?", requestedSchema=SCHEMA)

        result = await broker.elicitation_callback(None, params)

        assert result.action == "decline"
        assert result.content is None

    @pytest.mark.asyncio
    async def test_missing_schema_is_error(self):
        broker = ElicitationBroker()
        result = await broker.elicitation_callback(None, NS(message="Which branch?"))

        assert isinstance(result, types.ErrorData)
        assert result.code == types.INVALID_PARAMS
        assert broker.pending() == []
