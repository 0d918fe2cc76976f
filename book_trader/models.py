"""
models.py — Shared dataclasses for book-trader.

These are the records passed between the valuation engine, the offer
generator and selector, the two negotiation state machines, and the
settlement client. Keeping them in one file avoids circular imports.

Everything here is frozen: an AgentSnapshot is read concurrently by many
negotiation rounds and is only ever replaced wholesale, never patched.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass(frozen=True)
class Book:
    """A catalog title, plus the instance id once a specific copy is owned."""
    name: str
    book_id: Optional[int] = None

    def with_id(self, book_id: Optional[int]) -> "Book":
        return replace(self, book_id=book_id)


@dataclass(frozen=True)
class Goal:
    """A book the agent wants and what acquiring it is worth to it."""
    book: Book
    value: float


@dataclass(frozen=True)
class AgentSnapshot:
    """
    Inventory, goals and money as returned by the settlement authority.
    Installed as a whole by AgentState.replace().
    """
    books: tuple[Book, ...] = ()
    goals: tuple[Goal, ...] = ()
    money: float = 0.0

    def has_book(self, name: str) -> bool:
        return self.find_book(name) is not None

    def find_book(self, name: str) -> Optional[Book]:
        for book in self.books:
            if book.name == name:
                return book
        return None


@dataclass(frozen=True)
class Offer:
    """
    One exchange unit: the books and money the proposer wants in return.
    An empty `books` tuple is a money-only offer.
    """
    books: tuple[Book, ...] = ()
    money: float = 0.0

    def __post_init__(self):
        if self.money < 0:
            raise ValueError(f"Offer money must not be negative, got {self.money}")

    def same_terms(self, other: "Offer") -> bool:
        """Compare by value: requested book names (in order) and money."""
        return (
            [b.name for b in self.books] == [b.name for b in other.books]
            and self.money == other.money
        )


@dataclass(frozen=True)
class ProposalSet:
    """A responder's answer: what it will sell and the alternative prices."""
    will_sell: tuple[Book, ...]
    offers: tuple[Offer, ...]


@dataclass(frozen=True)
class Selection:
    """The buyer's chosen offer, echoed back to the winning seller."""
    offer: Offer


@dataclass(frozen=True)
class TransactionRequest:
    """
    Net effect of an agreed trade, as seen by the submitting side.

    Each side fills both directions from its own view of the round; the
    settlement authority pairs the two halves by conversation_id.
    """
    sender: str
    receiver: str
    conversation_id: str
    sending_books: tuple[Book, ...] = ()
    sending_money: float = 0.0
    receiving_books: tuple[Book, ...] = ()
    receiving_money: float = 0.0

    @property
    def idempotency_key(self) -> str:
        return f"{self.conversation_id}:{self.sender}"


@dataclass(frozen=True)
class Confirmation:
    """Returned by SettlementClient.settle() once the authority accepts."""
    transaction_id: str
    conversation_id: str
    status: str          # "confirmed" | "duplicate"
    settled_at: str = ""


@dataclass(frozen=True)
class RoundOutcome:
    """
    Terminal record of one negotiation round, for either role.
    `state` is the name of the final state of the state machine.
    """
    conversation_id: str
    role: str            # "buyer" | "seller"
    state: str
    peer: Optional[str] = None
    reason: Optional[str] = None
    transaction: Optional[TransactionRequest] = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.state == "DONE" and self.transaction is not None
