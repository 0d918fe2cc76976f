"""
offers.py — Seller-side offer generation.

Given the book names a buyer asked for, build the ProposalSet this agent
is willing to put on the table: one money-only price, plus one
book-for-book alternative per goal the seller has not yet satisfied.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .errors import InfeasibleError
from .models import AgentSnapshot, Book, Offer, ProposalSet
from .valuation import Valuation, unsatisfied_goals

logger = logging.getLogger("book_trader.offers")


def match_books(book_names: Sequence[str], snapshot: AgentSnapshot) -> list[Book]:
    """
    Resolve each requested name to the first held copy.
    Raises InfeasibleError if any name is not held.
    """
    if not book_names:
        raise InfeasibleError("request names no books")

    matched = []
    for name in book_names:
        book = snapshot.find_book(name)
        if book is None:
            raise InfeasibleError(f"'{name}' is not in inventory")
        matched.append(book)
    return matched


def generate_offers(
    book_names: Sequence[str],
    snapshot: AgentSnapshot,
    valuation: Valuation,
) -> ProposalSet:
    matched = match_books(book_names, snapshot)

    baseline = sum(valuation.sell(b, snapshot) for b in matched)
    offers = [Offer(money=baseline)]

    # Trade a book we can spare for one we want, subsidised down to zero.
    for goal in unsatisfied_goals(snapshot.goals, snapshot.books):
        offers.append(
            Offer(books=(goal.book,), money=max(0.0, baseline - goal.value))
        )

    logger.debug(
        "Offers for %s: baseline=%.2f alternatives=%d",
        [b.name for b in matched], baseline, len(offers) - 1,
    )
    return ProposalSet(will_sell=tuple(matched), offers=tuple(offers))
