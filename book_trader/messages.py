"""
messages.py — Negotiation message variants and their envelope.

The protocol uses a closed set of message types. Each carries its
performative; the state machines dispatch on the variant's class, never
on loosely typed content.

    Request        CFP              buyer  -> sellers
    Proposal       PROPOSE          seller -> buyer
    Refusal        REFUSE           seller -> buyer
    Accept         ACCEPT_PROPOSAL  buyer  -> winning seller
    Reject         REJECT_PROPOSAL  buyer  -> every other seller
    Completion     INFORM           seller -> buyer, after settling
    Failure        FAILURE          either side, round aborted
    NotUnderstood  NOT_UNDERSTOOD   either side, bad content

to_dict() / parse_message() convert variants to and from plain dicts for
transports that carry JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union
from uuid import uuid4

from .errors import MessageDecodeError
from .models import Book, Offer, ProposalSet, Selection


class Performative(str, Enum):
    CFP = "cfp"
    PROPOSE = "propose"
    REFUSE = "refuse"
    ACCEPT_PROPOSAL = "accept-proposal"
    REJECT_PROPOSAL = "reject-proposal"
    INFORM = "inform"
    FAILURE = "failure"
    NOT_UNDERSTOOD = "not-understood"


# ============================================================
# MESSAGE VARIANTS
# ============================================================

@dataclass(frozen=True)
class Request:
    """Call for proposals for one or more books, by name."""
    performative: ClassVar[Performative] = Performative.CFP
    book_names: tuple[str, ...]


@dataclass(frozen=True)
class Proposal:
    performative: ClassVar[Performative] = Performative.PROPOSE
    proposal_set: ProposalSet


@dataclass(frozen=True)
class Refusal:
    performative: ClassVar[Performative] = Performative.REFUSE
    reason: str = ""


@dataclass(frozen=True)
class Accept:
    performative: ClassVar[Performative] = Performative.ACCEPT_PROPOSAL
    selection: Selection


@dataclass(frozen=True)
class Reject:
    performative: ClassVar[Performative] = Performative.REJECT_PROPOSAL


@dataclass(frozen=True)
class Completion:
    """The sender's half of the settlement went through."""
    performative: ClassVar[Performative] = Performative.INFORM


@dataclass(frozen=True)
class Failure:
    performative: ClassVar[Performative] = Performative.FAILURE
    reason: str = ""


@dataclass(frozen=True)
class NotUnderstood:
    performative: ClassVar[Performative] = Performative.NOT_UNDERSTOOD
    reason: str = ""


Message = Union[
    Request, Proposal, Refusal, Accept, Reject, Completion, Failure, NotUnderstood
]


@dataclass(frozen=True)
class Envelope:
    """
    Routing metadata around a message. `conversation_id` identifies the
    negotiation round; `reply_by` is the sender's deadline for an answer.

    `message` is normally a Message variant; transports that carry JSON
    may hand over a raw dict, which the receiver decodes.
    """
    sender: str
    receiver: str
    conversation_id: str
    message: Union[Message, dict]
    reply_by: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def reply(self, message: Message, reply_by: Optional[datetime] = None) -> "Envelope":
        return Envelope(
            sender=self.receiver,
            receiver=self.sender,
            conversation_id=self.conversation_id,
            message=message,
            reply_by=reply_by,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender": self.sender,
            "receiver": self.receiver,
            "conversation_id": self.conversation_id,
            "reply_by": self.reply_by.isoformat() if self.reply_by else None,
            "message": self.message if isinstance(self.message, dict) else to_dict(self.message),
        }


def new_conversation_id() -> str:
    return f"trade-{uuid4()}"


def deadline_after(seconds: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


# ============================================================
# DICT CODEC
# ============================================================

def to_dict(msg: Message) -> dict:
    """
    Convert a message variant to a plain dict.

    Example:
        to_dict(Request(book_names=("Dune",)))
        == {"type": "cfp", "book_names": ["Dune"]}
    """
    data: dict[str, Any] = {"type": msg.performative.value}
    if isinstance(msg, Request):
        data["book_names"] = list(msg.book_names)
    elif isinstance(msg, Proposal):
        data["will_sell"] = [_book_to_dict(b) for b in msg.proposal_set.will_sell]
        data["offers"] = [_offer_to_dict(o) for o in msg.proposal_set.offers]
    elif isinstance(msg, Accept):
        data["offer"] = _offer_to_dict(msg.selection.offer)
    elif isinstance(msg, (Refusal, Failure, NotUnderstood)):
        data["reason"] = msg.reason
    elif not isinstance(msg, (Reject, Completion)):
        raise ValueError(f"Unknown message type: {type(msg)}")
    return data


def parse_message(data: dict) -> Message:
    """
    Parse a dict into a message variant.

    Raises:
        MessageDecodeError: unknown type, missing fields, or invalid values
            (for instance a negative offer price).
    """
    if not isinstance(data, dict):
        raise MessageDecodeError(f"Expected a dict, got {type(data).__name__}")

    msg_type = data.get("type")
    try:
        if msg_type == Performative.CFP.value:
            return Request(book_names=tuple(str(n) for n in data["book_names"]))
        if msg_type == Performative.PROPOSE.value:
            return Proposal(ProposalSet(
                will_sell=tuple(_book_from_dict(b) for b in data["will_sell"]),
                offers=tuple(_offer_from_dict(o) for o in data["offers"]),
            ))
        if msg_type == Performative.REFUSE.value:
            return Refusal(reason=data.get("reason", ""))
        if msg_type == Performative.ACCEPT_PROPOSAL.value:
            return Accept(Selection(offer=_offer_from_dict(data["offer"])))
        if msg_type == Performative.REJECT_PROPOSAL.value:
            return Reject()
        if msg_type == Performative.INFORM.value:
            return Completion()
        if msg_type == Performative.FAILURE.value:
            return Failure(reason=data.get("reason", ""))
        if msg_type == Performative.NOT_UNDERSTOOD.value:
            return NotUnderstood(reason=data.get("reason", ""))
    except (KeyError, TypeError, ValueError) as exc:
        raise MessageDecodeError(f"Malformed '{msg_type}' message: {exc}") from exc

    raise MessageDecodeError(f"Unknown message type: {msg_type}")


def decode(payload: Union[Message, dict]) -> Message:
    """Return `payload` as a message variant, decoding dicts."""
    if isinstance(payload, dict):
        return parse_message(payload)
    if isinstance(payload, (Request, Proposal, Refusal, Accept, Reject,
                            Completion, Failure, NotUnderstood)):
        return payload
    raise MessageDecodeError(f"Unsupported content: {type(payload).__name__}")


def _book_to_dict(book: Book) -> dict:
    return {"name": book.name, "book_id": book.book_id}


def _book_from_dict(data: dict) -> Book:
    return Book(name=str(data["name"]), book_id=data.get("book_id"))


def _offer_to_dict(offer: Offer) -> dict:
    return {"books": [_book_to_dict(b) for b in offer.books], "money": offer.money}


def _offer_from_dict(data: dict) -> Offer:
    return Offer(
        books=tuple(_book_from_dict(b) for b in data.get("books") or ()),
        money=float(data.get("money", 0.0)),
    )
