"""
transport.py — Message delivery and peer discovery boundaries.

The negotiation core only needs two capabilities from its environment:

    Transport.send(envelope)     deliver one envelope, or raise TransportFailure
    Directory.find_peers(role)   list the agent ids advertising a role

LocalTransport provides both in memory, for local markets and tests.
Swapping it for a networked transport does not change the core.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Awaitable, Callable, Iterable, Protocol

from .errors import TransportFailure
from .messages import Envelope, to_dict

logger = logging.getLogger("book_trader.transport")

Handler = Callable[[Envelope], Awaitable[None]]


class Transport(Protocol):
    async def send(self, envelope: Envelope) -> None: ...


class Directory(Protocol):
    def find_peers(self, role: str) -> list[str]: ...


class LocalTransport:
    """
    In-process transport and directory.

    Delivery schedules the receiver's handler as its own task, so a send
    never runs the receiver's code inline. With `serialize=True` every
    message goes through the dict codec on the way, as it would over JSON.
    `history` keeps the last `history_size` delivered envelopes.
    """

    def __init__(self, serialize: bool = False, history_size: int = 1000):
        self._handlers: dict[str, Handler] = {}
        self._roles: dict[str, set[str]] = {}
        self._pending: set[asyncio.Task] = set()
        self.serialize = serialize
        self.history: deque[Envelope] = deque(maxlen=history_size)

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def register(self, agent_id: str, handler: Handler, roles: Iterable[str] = ()) -> None:
        self._handlers[agent_id] = handler
        self._roles[agent_id] = set(roles)
        logger.debug("Registered %s roles=%s", agent_id, sorted(self._roles[agent_id]))

    def unregister(self, agent_id: str) -> None:
        self._handlers.pop(agent_id, None)
        self._roles.pop(agent_id, None)

    def find_peers(self, role: str) -> list[str]:
        return [agent_id for agent_id, roles in self._roles.items() if role in roles]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(self, envelope: Envelope) -> None:
        handler = self._handlers.get(envelope.receiver)
        if handler is None:
            raise TransportFailure(f"Unknown agent: {envelope.receiver}")

        if self.serialize and not isinstance(envelope.message, dict):
            envelope = replace(envelope, message=to_dict(envelope.message))

        self.history.append(envelope)
        task = asyncio.create_task(handler(envelope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every delivery scheduled so far has been handled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
