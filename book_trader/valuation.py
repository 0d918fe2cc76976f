"""
valuation.py — Subjective buy/sell values of books.

Pure functions over (book, goals, inventory, catalog). The only
non-determinism is the small premium added when selling a book the
agent still needs itself; pass `rng` to make it reproducible.
"""

from __future__ import annotations

import random
from typing import Iterable, Mapping, Optional, Sequence

from .errors import UnknownBookError
from .models import AgentSnapshot, Book, Goal, Offer

Catalog = Mapping[str, float]

DEFAULT_SELL_DISCOUNT = 20.0
DEFAULT_BUY_MARKDOWN = 10.0
DEFAULT_MAX_PREMIUM = 10


def catalog_price(name: str, catalog: Catalog) -> float:
    try:
        return float(catalog[name])
    except KeyError:
        raise UnknownBookError(f"'{name}' is not in the catalog") from None


def unsatisfied_goals(goals: Sequence[Goal], books: Iterable[Book]) -> list[Goal]:
    """Goals whose book name is not held, in goal order."""
    owned = {b.name for b in books}
    return [g for g in goals if g.book.name not in owned]


def unsatisfied_goal_books(goals: Sequence[Goal], books: Iterable[Book]) -> list[Book]:
    return [g.book for g in unsatisfied_goals(goals, books)]


def sell_value(
    book: Book,
    goals: Sequence[Goal],
    books: Iterable[Book],
    catalog: Catalog,
    *,
    discount: float = DEFAULT_SELL_DISCOUNT,
    max_premium: int = DEFAULT_MAX_PREMIUM,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Money the agent wants for parting with `book`.

    Surplus stock goes at catalog price minus `discount`. A book that
    matches a still-unsatisfied goal costs the goal value plus a premium
    of 1..max_premium, so the agent does not sell what it needs cheaply.
    """
    rng = rng or random
    value = catalog_price(book.name, catalog) - discount
    for goal in unsatisfied_goals(goals, books):
        if goal.book.name == book.name:
            value = goal.value + rng.randint(1, max_premium)
    return value


def buy_value(
    book: Book,
    goals: Sequence[Goal],
    books: Iterable[Book],
    catalog: Catalog,
    *,
    markdown: float = DEFAULT_BUY_MARKDOWN,
) -> float:
    """
    Money the agent is willing to pay for `book`: goal value minus
    `markdown` for an unsatisfied goal, a tenth of catalog price otherwise.
    """
    value = catalog_price(book.name, catalog) / 10
    for goal in unsatisfied_goals(goals, books):
        if goal.book.name == book.name:
            value = goal.value - markdown
    return value


def offer_utility(
    offer: Offer,
    offered_books: Iterable[Book],
    snapshot: AgentSnapshot,
    catalog: Catalog,
    *,
    discount: float = DEFAULT_SELL_DISCOUNT,
    markdown: float = DEFAULT_BUY_MARKDOWN,
    max_premium: int = DEFAULT_MAX_PREMIUM,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Net gain of accepting `offer` in exchange for `offered_books`:
    what we receive minus the money and the books we give up.
    """
    loss = offer.money + sum(
        sell_value(b, snapshot.goals, snapshot.books, catalog,
                   discount=discount, max_premium=max_premium, rng=rng)
        for b in offer.books
    )
    gain = sum(
        buy_value(b, snapshot.goals, snapshot.books, catalog, markdown=markdown)
        for b in offered_books
    )
    return gain - loss


class Valuation:
    """
    Binds a catalog and the valuation constants so callers only pass a
    book and the snapshot they read at decision time.
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        sell_discount: float = DEFAULT_SELL_DISCOUNT,
        buy_markdown: float = DEFAULT_BUY_MARKDOWN,
        max_premium: int = DEFAULT_MAX_PREMIUM,
        rng: Optional[random.Random] = None,
    ):
        self.catalog = dict(catalog)
        self.sell_discount = sell_discount
        self.buy_markdown = buy_markdown
        self.max_premium = max_premium
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, catalog: Catalog, config, rng: Optional[random.Random] = None) -> "Valuation":
        return cls(
            catalog,
            sell_discount=config.sell_discount,
            buy_markdown=config.buy_markdown,
            max_premium=config.max_premium,
            rng=rng,
        )

    def sell(self, book: Book, snapshot: AgentSnapshot) -> float:
        return sell_value(
            book, snapshot.goals, snapshot.books, self.catalog,
            discount=self.sell_discount,
            max_premium=self.max_premium,
            rng=self._rng,
        )

    def buy(self, book: Book, snapshot: AgentSnapshot) -> float:
        return buy_value(
            book, snapshot.goals, snapshot.books, self.catalog,
            markdown=self.buy_markdown,
        )

    def offer_utility(
        self,
        offer: Offer,
        offered_books: Iterable[Book],
        snapshot: AgentSnapshot,
    ) -> float:
        return offer_utility(
            offer, offered_books, snapshot, self.catalog,
            discount=self.sell_discount,
            markdown=self.buy_markdown,
            max_premium=self.max_premium,
            rng=self._rng,
        )
