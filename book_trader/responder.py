"""
responder.py — Seller side of the negotiation protocol.

One NegotiationResponder runs per incoming Request:

    AWAITING_REQUEST ──► PROPOSING ──► AWAITING_DECISION ──► SETTLING ──► DONE
           │                                  │    └─ Reject ──────────► DONE
           ├─ not held ──► REFUSED            └─ bad accept / timeout ─► FAILED
           └─ bad content ─► FAILED

Feasibility is checked against the snapshot read when the request
arrives. Nothing is reserved between proposing and settling: two
responders may offer the same copy to two buyers, and the settlement
authority rejects whichever trade comes second.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Optional

from .config import TraderConfig
from .errors import (
    BookTraderError,
    InfeasibleError,
    NegotiationError,
    NotUnderstoodError,
    TransportFailure,
)
from .fsm import StateMachine
from .messages import (
    Accept,
    Completion,
    Envelope,
    Failure,
    Message,
    NotUnderstood,
    Proposal,
    Refusal,
    Reject,
    Request,
    deadline_after,
    decode,
)
from .models import ProposalSet, RoundOutcome, Selection, TransactionRequest
from .offers import generate_offers
from .settlement import SettlementClient, SettlementError
from .state import AgentState
from .transport import Transport
from .valuation import Valuation

logger = logging.getLogger("book_trader.responder")


class ResponderState(Enum):
    AWAITING_REQUEST = auto()
    PROPOSING = auto()
    AWAITING_DECISION = auto()
    SETTLING = auto()
    DONE = auto()
    REFUSED = auto()
    FAILED = auto()


class NegotiationResponder(StateMachine):

    INITIAL = ResponderState.AWAITING_REQUEST
    TRANSITIONS = {
        ResponderState.AWAITING_REQUEST: {
            ResponderState.PROPOSING, ResponderState.REFUSED, ResponderState.FAILED,
        },
        ResponderState.PROPOSING: {ResponderState.AWAITING_DECISION, ResponderState.FAILED},
        ResponderState.AWAITING_DECISION: {
            ResponderState.SETTLING, ResponderState.DONE, ResponderState.FAILED,
        },
        ResponderState.SETTLING: {ResponderState.DONE, ResponderState.FAILED},
        ResponderState.DONE: set(),
        ResponderState.REFUSED: set(),
        ResponderState.FAILED: set(),
    }

    def __init__(
        self,
        agent_id: str,
        request: Envelope,
        *,
        state: AgentState,
        valuation: Valuation,
        transport: Transport,
        settlement: SettlementClient,
        config: TraderConfig,
    ):
        super().__init__(request.conversation_id)
        self.agent_id = agent_id
        self.request = request
        self.buyer = request.sender
        self._state = state
        self._valuation = valuation
        self._transport = transport
        self._settlement = settlement
        self._config = config
        self.proposal: Optional[ProposalSet] = None

    async def run(self) -> RoundOutcome:
        try:
            return await self._run()
        except NotUnderstoodError as exc:
            return await self._fail(exc, NotUnderstood(reason=str(exc)))
        except SettlementError as exc:
            return await self._fail(exc, Failure(reason=exc.reason))
        except NegotiationError as exc:
            return await self._fail(exc, None)
        except BookTraderError as exc:
            return await self._fail(exc, Failure(reason=str(exc)))

    async def _run(self) -> RoundOutcome:
        request = self._decode(self.request, Request)

        try:
            proposal = generate_offers(request.book_names, self._state.snapshot(), self._valuation)
        except InfeasibleError as exc:
            await self._reply(Refusal(reason=str(exc)))
            self.transition(ResponderState.REFUSED)
            logger.info("Refused %s from %s: %s", self.conversation_id, self.buyer, exc)
            return self._outcome(reason=exc.reason)

        self.transition(ResponderState.PROPOSING)
        self.proposal = proposal
        await self._reply(Proposal(proposal), reply_by=deadline_after(self._config.reply_timeout))
        self.transition(ResponderState.AWAITING_DECISION)

        decision = await self._await_decision()
        if decision is None:
            self.transition(ResponderState.DONE)
            logger.debug("Proposal %s rejected by %s", self.conversation_id, self.buyer)
            return self._outcome(reason="rejected")

        self._validate(decision)

        self.transition(ResponderState.SETTLING)
        transaction = TransactionRequest(
            sender=self.agent_id,
            receiver=self.buyer,
            conversation_id=self.conversation_id,
            sending_books=proposal.will_sell,
            sending_money=0.0,
            receiving_books=decision.offer.books,
            receiving_money=decision.offer.money,
        )
        await self._settlement.settle(transaction)
        await self._reply(Completion())
        self.transition(ResponderState.DONE)
        logger.info(
            "Sold %s to %s for %.2f + %s (%s)",
            [b.name for b in proposal.will_sell], self.buyer, decision.offer.money,
            [b.name for b in decision.offer.books], self.conversation_id,
        )
        return self._outcome(transaction=transaction)

    async def _await_decision(self) -> Optional[Selection]:
        """Return the buyer's Selection, or None on rejection."""
        deadline = self.deadline_in(self._config.reply_timeout)
        while True:
            envelope = await self.receive(deadline)
            if envelope.sender != self.buyer:
                logger.debug("Dropping message from %s in %s", envelope.sender, self.conversation_id)
                continue
            message = self._decode(envelope, (Accept, Reject))
            if isinstance(message, Reject):
                return None
            return message.selection

    def _validate(self, selection: Selection) -> None:
        if not any(selection.offer.same_terms(o) for o in self.proposal.offers):
            raise NotUnderstoodError(
                f"accepted offer {selection.offer} was not proposed in {self.conversation_id}"
            )

    def _decode(self, envelope: Envelope, expected) -> Message:
        try:
            message = decode(envelope.message)
        except BookTraderError as exc:
            raise NotUnderstoodError(str(exc)) from exc
        if not isinstance(message, expected):
            raise NotUnderstoodError(
                f"unexpected {type(message).__name__} in state {self.state.name}"
            )
        return message

    async def _reply(self, message: Message, reply_by=None) -> None:
        await self._transport.send(self.request.reply(message, reply_by=reply_by))

    async def _fail(self, exc: BookTraderError, reply: Optional[Message]) -> RoundOutcome:
        if reply is not None:
            try:
                await self._reply(reply)
            except TransportFailure as send_exc:
                logger.warning("Could not notify %s of failure: %s", self.buyer, send_exc)
        self.transition(ResponderState.FAILED)
        logger.warning(
            "Sell round %s with %s failed (%s): %s",
            self.conversation_id, self.buyer, type(exc).__name__, exc,
        )
        return self._outcome(reason=getattr(exc, "reason", "error"))

    def _outcome(self, reason: Optional[str] = None, transaction=None) -> RoundOutcome:
        return RoundOutcome(
            conversation_id=self.conversation_id,
            role="seller",
            state=self.state.name,
            peer=self.buyer,
            reason=reason,
            transaction=transaction,
        )
