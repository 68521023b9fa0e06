"""Pending elicitation requests awaiting a user's answer.

An MCP server may ask the client to collect structured input from the
user.  :class:`ElicitationBroker` parks each request on a future until a
UI answers it through :meth:`ElicitationBroker.respond`, or declines it
on the user's behalf after ``timeout`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any

from mcp import types

logger = logging.getLogger(__name__)

ELICITATION_ACTIONS = ("accept", "decline", "cancel")


@dataclass
class PendingElicitation:
    id: str
    message: str
    schema: dict[str, Any]
    timestamp: float = field(default_factory=time.time)
    future: asyncio.Future = field(default=None, repr=False)

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "schema": self.schema,
            "timestamp": self.timestamp,
        }


class ElicitationBroker:
    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._pending: dict[str, PendingElicitation] = {}

    def pending(self) -> list[dict[str, Any]]:
        return [p.describe() for p in self._pending.values()]

    async def request(self, message: str, schema: dict[str, Any]) -> dict[str, Any]:
        """Wait for the user's answer to an elicitation request.

        Returns the response dict (``{"action": ..., "content": ...}``);
        ``{"action": "decline"}`` when nobody answers in time.

        Raises:
            ValueError: If *message* or *schema* is empty.
        """
        if not message or not schema:
            raise ValueError("Invalid elicitation request: missing message or schema")

        suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9))
        elicitation_id = f"elicit-{int(time.time() * 1000)}-{suffix}"
        future = asyncio.get_running_loop().create_future()
        self._pending[elicitation_id] = PendingElicitation(
            id=elicitation_id, message=message, schema=schema, future=future,
        )
        logger.info(f"Created elicitation request {elicitation_id}")

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Elicitation {elicitation_id} timed out; declining")
            return {"action": "decline"}
        finally:
            self._pending.pop(elicitation_id, None)

    def respond(
        self, elicitation_id: str, action: str, content: dict[str, Any] | None = None,
    ) -> bool:
        """Resolve a pending request.  Returns ``False`` for unknown ids.

        Raises:
            ValueError: If *action* is not accept, decline or cancel.
        """
        if action not in ELICITATION_ACTIONS:
            raise ValueError("Invalid action. Must be: accept, decline, or cancel")

        pending = self._pending.pop(elicitation_id, None)
        if pending is None:
            logger.warning(f"No pending elicitation found for ID: {elicitation_id}")
            return False

        response: dict[str, Any] = {"action": action}
        if action == "accept" and content:
            response["content"] = content
        if not pending.future.done():
            pending.future.set_result(response)
        logger.info(f"Resolved elicitation {elicitation_id} with {action}")
        return True

    async def elicitation_callback(
        self, context: Any, params: types.ElicitRequestParams,
    ) -> types.ElicitResult | types.ErrorData:
        """Answer a server's ``elicitation/create`` request through this broker.

        Pass as ``elicitation_callback`` to :class:`mcp.ClientSession`.
        """
        message = getattr(params, "message", "")
        schema = getattr(params, "requestedSchema", None)
        logger.info(f"Incoming elicitation request: {message!r}")
        try:
            response = await self.request(message, schema)
        except ValueError as e:
            logger.error(f"Elicitation request failed: {e}")
            return types.ErrorData(code=types.INVALID_PARAMS, message=f"Elicitation failed: {e}")
        return types.ElicitResult(**response)
