"""
initiator.py — Buyer side of the negotiation protocol.

One NegotiationInitiator runs per missing goal book per scheduler tick:

    IDLE ─► REQUESTING ─► COLLECTING_OFFERS ─► DECIDING ─► AWAITING_CONFIRMATION ─► SETTLING ─► DONE
                │                                                │
                └─ no peers ─► DONE          no acceptable offer ┴─► DONE
    any step: transport / timeout / settlement error ─► FAILED

Nothing is retried inside a round. A failed or fruitless round leaves the
goal unsatisfied and the next tick tries again.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Optional

from .config import TraderConfig
from .errors import (
    BookTraderError,
    NegotiationTimeout,
    NotUnderstoodError,
    PeerFailure,
    TransportFailure,
)
from .fsm import StateMachine
from .messages import (
    Accept,
    Completion,
    Envelope,
    Failure,
    NotUnderstood,
    Proposal,
    Reject,
    Request,
    deadline_after,
    decode,
    new_conversation_id,
)
from .models import Book, ProposalSet, RoundOutcome, Selection, TransactionRequest
from .selection import Choice, select_offer
from .settlement import SettlementClient
from .state import AgentState
from .transport import Directory, Transport
from .valuation import Valuation

logger = logging.getLogger("book_trader.initiator")


class InitiatorState(Enum):
    IDLE = auto()
    REQUESTING = auto()
    COLLECTING_OFFERS = auto()
    DECIDING = auto()
    AWAITING_CONFIRMATION = auto()
    SETTLING = auto()
    DONE = auto()
    FAILED = auto()


class NegotiationInitiator(StateMachine):

    INITIAL = InitiatorState.IDLE
    TRANSITIONS = {
        InitiatorState.IDLE: {InitiatorState.REQUESTING, InitiatorState.FAILED},
        InitiatorState.REQUESTING: {
            InitiatorState.COLLECTING_OFFERS, InitiatorState.DONE, InitiatorState.FAILED,
        },
        InitiatorState.COLLECTING_OFFERS: {InitiatorState.DECIDING, InitiatorState.FAILED},
        InitiatorState.DECIDING: {InitiatorState.AWAITING_CONFIRMATION, InitiatorState.FAILED},
        InitiatorState.AWAITING_CONFIRMATION: {
            InitiatorState.SETTLING, InitiatorState.DONE, InitiatorState.FAILED,
        },
        InitiatorState.SETTLING: {InitiatorState.DONE, InitiatorState.FAILED},
        InitiatorState.DONE: set(),
        InitiatorState.FAILED: set(),
    }

    def __init__(
        self,
        agent_id: str,
        book: Book,
        *,
        state: AgentState,
        valuation: Valuation,
        transport: Transport,
        directory: Directory,
        settlement: SettlementClient,
        config: TraderConfig,
        conversation_id: Optional[str] = None,
    ):
        super().__init__(conversation_id or new_conversation_id())
        self.agent_id = agent_id
        self.book = book
        self._state = state
        self._valuation = valuation
        self._transport = transport
        self._directory = directory
        self._settlement = settlement
        self._config = config
        self.choice: Optional[Choice] = None

    async def run(self) -> RoundOutcome:
        try:
            return await self._run()
        except BookTraderError as exc:
            # NegotiationError and SettlementError alike end only this round.
            return self._fail(exc)

    async def _run(self) -> RoundOutcome:
        self.transition(InitiatorState.REQUESTING)
        peers = [p for p in self._directory.find_peers(self._config.trading_role)
                 if p != self.agent_id]
        if not peers:
            self.transition(InitiatorState.DONE)
            logger.debug("No trading peers for %s", self.book.name)
            return self._outcome(reason="no-peers")

        deadline = self.deadline_in(self._config.reply_timeout)
        reply_by = deadline_after(self._config.reply_timeout)
        for peer in peers:
            await self._send(peer, Request(book_names=(self.book.name,)), reply_by=reply_by)
        logger.info(
            "Requested '%s' from %d peers (%s)", self.book.name, len(peers), self.conversation_id,
        )

        self.transition(InitiatorState.COLLECTING_OFFERS)
        proposals = await self._collect(peers, deadline)

        self.transition(InitiatorState.DECIDING)
        choice = select_offer(proposals, self._state.snapshot(), self._valuation)
        self.choice = choice

        self.transition(InitiatorState.AWAITING_CONFIRMATION)
        # Losers first: once the winner is accepted it may settle its half.
        for peer, _ in proposals:
            if choice is None or peer != choice.peer:
                await self._reject(peer)

        if choice is None:
            self.transition(InitiatorState.DONE)
            logger.info(
                "No acceptable offer for '%s' among %d proposals (%s)",
                self.book.name, len(proposals), self.conversation_id,
            )
            return self._outcome(reason="no-acceptable-offer")

        await self._send(choice.peer, Accept(Selection(choice.offer)))
        await self._await_completion(choice.peer)

        self.transition(InitiatorState.SETTLING)
        transaction = TransactionRequest(
            sender=self.agent_id,
            receiver=choice.peer,
            conversation_id=self.conversation_id,
            sending_books=choice.offer.books,
            sending_money=choice.offer.money,
            receiving_books=choice.will_sell,
            receiving_money=0.0,
        )
        await self._settlement.settle(transaction)
        self.transition(InitiatorState.DONE)
        logger.info(
            "Bought %s from %s for %.2f + %s, utility=%.2f (%s)",
            [b.name for b in choice.will_sell], choice.peer, choice.offer.money,
            [b.name for b in choice.offer.books], choice.utility, self.conversation_id,
        )
        return self._outcome(peer=choice.peer, transaction=transaction)

    async def _collect(self, peers: list[str], deadline: float) -> list[tuple[str, ProposalSet]]:
        """
        Gather proposals until every peer has answered or the deadline
        passes. Refusals and undecodable answers are dropped.
        """
        pending = set(peers)
        proposals: list[tuple[str, ProposalSet]] = []
        while pending:
            try:
                envelope = await self.receive(deadline)
            except NegotiationTimeout:
                logger.debug(
                    "Collection window closed for %s, %d peers silent",
                    self.conversation_id, len(pending),
                )
                break
            if envelope.sender not in pending:
                logger.debug("Dropping unexpected message from %s", envelope.sender)
                continue
            pending.discard(envelope.sender)

            try:
                message = decode(envelope.message)
            except BookTraderError as exc:
                await self._send(envelope.sender, NotUnderstood(reason=str(exc)))
                logger.debug("Undecodable answer from %s: %s", envelope.sender, exc)
                continue

            if isinstance(message, Proposal):
                proposals.append((envelope.sender, message.proposal_set))
            else:
                logger.debug(
                    "%s answered %s for '%s'",
                    envelope.sender, type(message).__name__, self.book.name,
                )
        return proposals

    async def _await_completion(self, peer: str) -> None:
        deadline = self.deadline_in(self._config.reply_timeout)
        while True:
            envelope = await self.receive(deadline)
            if envelope.sender != peer:
                logger.debug("Dropping late message from %s", envelope.sender)
                continue
            try:
                message = decode(envelope.message)
            except BookTraderError as exc:
                raise NotUnderstoodError(str(exc)) from exc
            if isinstance(message, Completion):
                return
            if isinstance(message, (Failure, NotUnderstood)):
                raise PeerFailure(f"{peer} aborted: {message.reason or type(message).__name__}")
            raise NotUnderstoodError(f"unexpected {type(message).__name__} from {peer}")

    async def _send(self, peer: str, message, reply_by=None) -> None:
        await self._transport.send(Envelope(
            sender=self.agent_id,
            receiver=peer,
            conversation_id=self.conversation_id,
            message=message,
            reply_by=reply_by,
        ))

    async def _reject(self, peer: str) -> None:
        try:
            await self._send(peer, Reject())
        except TransportFailure as exc:
            logger.warning("Could not reject %s in %s: %s", peer, self.conversation_id, exc)

    def _fail(self, exc: BookTraderError) -> RoundOutcome:
        self.transition(InitiatorState.FAILED)
        logger.warning(
            "Buy round %s for '%s' failed (%s): %s",
            self.conversation_id, self.book.name, type(exc).__name__, exc,
        )
        peer = self.choice.peer if self.choice else None
        return self._outcome(peer=peer, reason=getattr(exc, "reason", "error"))

    def _outcome(self, peer: Optional[str] = None, reason: Optional[str] = None,
                 transaction=None) -> RoundOutcome:
        return RoundOutcome(
            conversation_id=self.conversation_id,
            role="buyer",
            state=self.state.name,
            peer=peer,
            reason=reason,
            transaction=transaction,
        )
