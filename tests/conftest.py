"""
Shared pytest fixtures for book-trader tests.

FakeAuthority is an in-memory settlement authority served through
httpx.MockTransport, so no test touches the network. Each submitted
half-transaction moves the sender's books and money to the receiver;
a book the sender no longer holds, or money it lacks, is rejected the
way a real authority rejects a double spend.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import json

import httpx
import pytest

from book_trader.config import TraderConfig
from book_trader.errors import TransportFailure
from book_trader.messages import Envelope
from book_trader.models import AgentSnapshot, Book, Goal
from book_trader.settlement import SettlementClient
from book_trader.state import AgentState
from book_trader.valuation import Valuation

AUTHORITY_URL = "https://authority.test"

CATALOG = {
    "Dune": 100.0,
    "Foundation": 50.0,
    "Hyperion": 60.0,
    "Neuromancer": 40.0,
}


class FakeAuthority:

    def __init__(self):
        self.agents: dict[str, dict] = {}
        self.transactions: list[dict] = []
        self.seen_keys: set[str] = set()
        self.snapshot_outage = False
        self._ids = itertools.count(1)

    def add_agent(self, agent_id: str, books=(), goals=(), money: float = 0.0) -> None:
        self.agents[agent_id] = {
            "books": [{"name": name, "book_id": next(self._ids)} for name in books],
            "goals": [{"book": {"name": name}, "value": value} for name, value in goals],
            "money": money,
        }

    def book_names(self, agent_id: str) -> list[str]:
        return [b["name"] for b in self.agents[agent_id]["books"]]

    def money(self, agent_id: str) -> float:
        return self.agents[agent_id]["money"]

    # ------------------------------------------------------------------
    # HTTP handler
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path.startswith("/v1/agents/"):
            agent_id = path.rsplit("/", 1)[-1]
            if self.snapshot_outage:
                return httpx.Response(503, json={"error": "snapshots unavailable"})
            if agent_id not in self.agents:
                return httpx.Response(404, json={"error": f"no agent {agent_id}"})
            return httpx.Response(200, json=copy.deepcopy(self.agents[agent_id]))

        if request.method == "POST" and path == "/v1/transactions":
            return self._transaction(json.loads(request.content))

        return httpx.Response(404, json={"error": "no route"})

    def _transaction(self, body: dict) -> httpx.Response:
        key = body["idempotency_key"]
        if key in self.seen_keys:
            return httpx.Response(409, json={"error": "duplicate"})

        sender = self.agents.get(body["sender"])
        receiver = self.agents.get(body["receiver"])
        if sender is None or receiver is None:
            return httpx.Response(404, json={"error": "unknown agent"})

        if body["sending_money"] > sender["money"]:
            return httpx.Response(402, json={"error": "insufficient money"})

        moving = []
        for book in body["sending_books"]:
            held = next(
                (b for b in sender["books"] if b["book_id"] == book["book_id"]
                 and b["name"] == book["name"] and b not in moving),
                None,
            )
            if held is None:
                return httpx.Response(422, json={"detail": f"{book['name']} not held"})
            moving.append(held)

        for held in moving:
            sender["books"].remove(held)
            receiver["books"].append(held)
        sender["money"] -= body["sending_money"]
        receiver["money"] += body["sending_money"]

        self.seen_keys.add(key)
        self.transactions.append(body)
        return httpx.Response(200, json={
            "transaction_id": f"tx-{len(self.transactions)}",
            "status": "confirmed",
            "settled_at": "2026-10-19T12:00:00Z",
        })


# ---------------------------------------------------------------------------
# Transport doubles
# ---------------------------------------------------------------------------

class RecordingTransport:
    """Transport that queues every outgoing envelope for the test to read."""

    def __init__(self, unreachable=()):
        self.sent: list[Envelope] = []
        self.outbox: asyncio.Queue[Envelope] = asyncio.Queue()
        self.unreachable = set(unreachable)

    async def send(self, envelope: Envelope) -> None:
        if envelope.receiver in self.unreachable:
            raise TransportFailure(f"Unknown agent: {envelope.receiver}")
        self.sent.append(envelope)
        self.outbox.put_nowait(envelope)

    async def next(self, timeout: float = 1.0) -> Envelope:
        return await asyncio.wait_for(self.outbox.get(), timeout)


class StaticDirectory:

    def __init__(self, *peers: str):
        self.peers = list(peers)

    def find_peers(self, role: str) -> list[str]:
        return list(self.peers)


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

def snapshot(books=(), goals=(), money: float = 0.0) -> AgentSnapshot:
    """Build an AgentSnapshot from names: books=["Dune"], goals=[("Dune", 80)]."""
    return AgentSnapshot(
        books=tuple(Book(name, book_id=i + 1) for i, name in enumerate(books)),
        goals=tuple(Goal(Book(name), value) for name, value in goals),
        money=money,
    )


def make_settlement(
    agent_id: str,
    state: AgentState,
    authority: FakeAuthority,
    config: TraderConfig,
) -> SettlementClient:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(authority.handler), base_url=AUTHORITY_URL,
    )
    return SettlementClient(agent_id, state, config, http_client=http, backoff=0)


@pytest.fixture
def catalog() -> dict:
    return dict(CATALOG)


@pytest.fixture
def config() -> TraderConfig:
    return TraderConfig(
        settlement_url=AUTHORITY_URL,
        reply_timeout=0.5,
        tick_interval=0.2,
        retries=2,
    )


@pytest.fixture
def valuation(catalog) -> Valuation:
    return Valuation(catalog)


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()
