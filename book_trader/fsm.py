"""
fsm.py — Transition-table base for the negotiation state machines.

Each role declares its states as an Enum and the legal moves between
them in TRANSITIONS. Terminal states have no outgoing transitions, so a
finished round cannot be restarted or resumed by a stray message.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import ClassVar, Optional

from .errors import InvalidTransitionError, NegotiationTimeout
from .messages import Envelope

logger = logging.getLogger("book_trader.fsm")


class StateMachine:

    TRANSITIONS: ClassVar[dict[Enum, set[Enum]]] = {}
    INITIAL: ClassVar[Enum]

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.state = self.INITIAL
        self.inbox: asyncio.Queue[Envelope] = asyncio.Queue()

    def is_terminal(self) -> bool:
        return not self.TRANSITIONS.get(self.state)

    def can_transition(self, to_state: Enum) -> bool:
        return to_state in self.TRANSITIONS.get(self.state, set())

    def transition(self, to_state: Enum) -> None:
        if not self.can_transition(to_state):
            raise InvalidTransitionError(
                f"{type(self).__name__}: {self.state.name} -> {to_state.name} not allowed"
            )
        logger.debug(
            "%s %s: %s -> %s",
            type(self).__name__, self.conversation_id, self.state.name, to_state.name,
        )
        self.state = to_state

    async def receive(self, deadline: float) -> Envelope:
        """
        Wait for the next envelope routed to this round until `deadline`
        (event-loop time). Raises NegotiationTimeout when it passes.
        """
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise NegotiationTimeout(f"{self.conversation_id}: deadline passed")
        try:
            return await asyncio.wait_for(self.inbox.get(), remaining)
        except asyncio.TimeoutError:
            raise NegotiationTimeout(
                f"{self.conversation_id}: no reply within deadline"
            ) from None

    @staticmethod
    def deadline_in(seconds: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> float:
        loop = loop or asyncio.get_running_loop()
        return loop.time() + seconds
