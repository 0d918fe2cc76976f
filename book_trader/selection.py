"""
selection.py — Buyer-side feasibility check and offer choice.

Offers are resolved against the snapshot read at decision time. An offer
that asks for a book we no longer hold, or for more money than we have,
is never chosen. Among the rest the highest utility wins; ties keep the
offer seen first, in response order. A best utility of zero or less
means no offer is accepted this round. Offers priced in books missing
from our catalog are skipped; the rest of the round goes on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import UnknownBookError
from .models import AgentSnapshot, Book, Offer, ProposalSet
from .valuation import Valuation

logger = logging.getLogger("book_trader.selection")


@dataclass(frozen=True)
class Choice:
    """The winning offer of a round and who made it."""
    peer: str
    offer: Offer                  # resolved: books carry our instance ids
    will_sell: tuple[Book, ...]
    utility: float


def resolve_offer(offer: Offer, snapshot: AgentSnapshot) -> Optional[Offer]:
    """
    Return a copy of `offer` whose requested books carry the ids of the
    copies we hold, or None if we cannot pay for it.
    """
    if offer.money > snapshot.money:
        return None

    resolved = []
    for requested in offer.books:
        held = snapshot.find_book(requested.name)
        if held is None:
            return None
        resolved.append(requested.with_id(held.book_id))
    return Offer(books=tuple(resolved), money=offer.money)


def select_offer(
    proposals: Sequence[tuple[str, ProposalSet]],
    snapshot: AgentSnapshot,
    valuation: Valuation,
) -> Optional[Choice]:
    best: Optional[Choice] = None
    for peer, proposal in proposals:
        for offer in proposal.offers:
            resolved = resolve_offer(offer, snapshot)
            if resolved is None:
                continue
            try:
                utility = valuation.offer_utility(resolved, proposal.will_sell, snapshot)
            except UnknownBookError as exc:
                logger.debug("Skipping offer from %s: %s", peer, exc)
                continue
            if best is None or utility > best.utility:
                best = Choice(peer, resolved, proposal.will_sell, utility)

    if best is None or best.utility <= 0:
        return None
    return best
