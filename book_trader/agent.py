"""
agent.py — The trading agent: goal-scan scheduler and message dispatch.

BookTrader glues the pieces together:

  - start() fetches the agent's snapshot from the settlement authority,
    then ticks every `tick_interval` seconds. Each tick spawns one
    NegotiationInitiator per unsatisfied goal book, whether or not an
    earlier round for the same book is still running.
  - deliver() is the transport handler. Replies are routed to the round
    that owns the conversation; a Request for an unknown conversation
    spawns a NegotiationResponder; anything else is a late reply to a
    finished round and is dropped.

Usage:
    transport = LocalTransport()
    agent = BookTrader("alice", catalog, transport, transport, config=config)
    transport.register("alice", agent.deliver, roles=[config.trading_role])
    async with agent:
        ...
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Mapping, Optional, Union

from .config import TraderConfig
from .errors import MessageDecodeError
from .initiator import NegotiationInitiator
from .messages import Envelope, Request, decode
from .models import Book, RoundOutcome
from .responder import NegotiationResponder
from .settlement import SettlementClient
from .state import AgentState
from .transport import Directory, Transport
from .valuation import Valuation, unsatisfied_goal_books

logger = logging.getLogger("book_trader.agent")

Round = Union[NegotiationInitiator, NegotiationResponder]


class BookTrader:

    def __init__(
        self,
        agent_id: str,
        catalog: Mapping[str, float],
        transport: Transport,
        directory: Directory,
        *,
        config: Optional[TraderConfig] = None,
        state: Optional[AgentState] = None,
        settlement: Optional[SettlementClient] = None,
        rng: Optional[random.Random] = None,
    ):
        self.agent_id = agent_id
        self.config = config or TraderConfig()
        self.state = state or AgentState()
        self.settlement = settlement or SettlementClient(agent_id, self.state, self.config)
        self.valuation = Valuation.from_config(catalog, self.config, rng=rng)
        self._transport = transport
        self._directory = directory
        self._initiators: dict[str, NegotiationInitiator] = {}
        self._responders: dict[tuple[str, str], NegotiationResponder] = {}
        self._tasks: set[asyncio.Task] = set()
        self._ticker: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        snapshot = await self.settlement.refresh()
        logger.info(
            "%s trading: books=%d goals=%d money=%.2f",
            self.agent_id, len(snapshot.books), len(snapshot.goals), snapshot.money,
        )
        self._ticker = asyncio.create_task(self._run_ticker())

    async def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(
            *tasks, *([self._ticker] if self._ticker else []), return_exceptions=True,
        )
        self._ticker = None
        await self.settlement.aclose()
        logger.info("%s stopped", self.agent_id)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def wait_idle(self) -> None:
        """Wait for every round in flight (and any they spawn) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_ticker(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.config.tick_interval)

    def tick(self) -> list[asyncio.Task]:
        """Spawn one buy round per unsatisfied goal book in the current snapshot."""
        snapshot = self.state.snapshot()
        return [self.buy(book) for book in unsatisfied_goal_books(snapshot.goals, snapshot.books)]

    def buy(self, book: Book) -> asyncio.Task:
        initiator = NegotiationInitiator(
            self.agent_id,
            book,
            state=self.state,
            valuation=self.valuation,
            transport=self._transport,
            directory=self._directory,
            settlement=self.settlement,
            config=self.config,
        )
        return self._spawn(initiator, self._initiators, initiator.conversation_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def deliver(self, envelope: Envelope) -> None:
        responder = self._responders.get((envelope.conversation_id, envelope.sender))
        if responder is not None:
            responder.inbox.put_nowait(envelope)
            return

        initiator = self._initiators.get(envelope.conversation_id)
        if initiator is not None:
            initiator.inbox.put_nowait(envelope)
            return

        if self._opens_round(envelope):
            responder = NegotiationResponder(
                self.agent_id,
                envelope,
                state=self.state,
                valuation=self.valuation,
                transport=self._transport,
                settlement=self.settlement,
                config=self.config,
            )
            self._spawn(responder, self._responders, (envelope.conversation_id, envelope.sender))
            return

        logger.debug(
            "Dropping message from %s for finished conversation %s",
            envelope.sender, envelope.conversation_id,
        )

    @staticmethod
    def _opens_round(envelope: Envelope) -> bool:
        # Undecodable content also gets a responder, which answers NotUnderstood.
        try:
            return isinstance(decode(envelope.message), Request)
        except MessageDecodeError:
            return True

    def _spawn(self, machine: Round, registry: dict, key) -> asyncio.Task:
        registry[key] = machine
        task = asyncio.create_task(self._run_round(machine, registry, key))
        self._tasks.add(task)
        task.add_done_callback(self._round_done)
        return task

    @staticmethod
    async def _run_round(machine: Round, registry: dict, key) -> RoundOutcome:
        try:
            return await machine.run()
        finally:
            registry.pop(key, None)

    def _round_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: negotiation round crashed", self.agent_id, exc_info=exc)
