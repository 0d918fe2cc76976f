"""
test_agent.py — End-to-end trading between BookTrader agents.

Agents talk over LocalTransport and settle against the in-memory
FakeAuthority. Most tests call tick() by hand so each round starts
deterministically; TestLifecycle runs the real ticker.

Market:
  alice:  holds Foundation, goal Dune=80, money 50
  bob:    holds Dune, goal Foundation=60, money 0
  bob proposes Dune for 80 (unaffordable) or for Foundation + 20,
  alice values the swap at 70 - (20 + 30) = 20 and accepts.

Run with:
    pytest tests/test_agent.py -v
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from book_trader.agent import BookTrader
from book_trader.initiator import NegotiationInitiator
from book_trader.messages import Completion, Envelope, NotUnderstood
from book_trader.models import Book
from book_trader.state import AgentState
from book_trader.transport import LocalTransport
from conftest import make_settlement

pytestmark = pytest.mark.asyncio


def make_agent(agent_id, catalog, transport, authority, config) -> BookTrader:
    state = AgentState()
    agent = BookTrader(
        agent_id,
        catalog,
        transport,
        transport,
        config=config,
        state=state,
        settlement=make_settlement(agent_id, state, authority, config),
    )
    transport.register(agent_id, agent.deliver, roles=[config.trading_role])
    return agent


@pytest.fixture
def market(authority):
    authority.add_agent("alice", books=["Foundation"], goals=[("Dune", 80)], money=50)
    authority.add_agent("bob", books=["Dune"], goals=[("Foundation", 60)])
    return authority


async def settle_all(transport, *agents) -> None:
    for _ in range(3):
        await transport.drain()
        for agent in agents:
            await agent.wait_idle()


# ---------------------------------------------------------------------------
# Full rounds
# ---------------------------------------------------------------------------

class TestTrade:

    @pytest.mark.parametrize("serialize", [False, True])
    async def test_swap_completes_on_both_sides(self, market, catalog, config, serialize):
        transport = LocalTransport(serialize=serialize)
        alice = make_agent("alice", catalog, transport, market, config)
        bob = make_agent("bob", catalog, transport, market, config)
        await alice.settlement.refresh()
        await bob.settlement.refresh()

        (task,) = alice.tick()
        outcome = await asyncio.wait_for(task, 2.0)
        await settle_all(transport, alice, bob)

        assert outcome.succeeded
        assert outcome.peer == "bob"
        assert market.book_names("alice") == ["Dune"]
        assert market.book_names("bob") == ["Foundation"]
        assert market.money("alice") == 30
        assert market.money("bob") == 20
        assert len(market.transactions) == 2

        # Each agent's state is the authority's snapshot after its own half
        assert [b.name for b in alice.state.snapshot().books] == ["Dune"]
        assert alice.state.snapshot().money == 30
        assert bob.state.snapshot().books == ()
        assert alice.tick() == []

        # bob sees alice's half on its next refresh
        await bob.settlement.refresh()
        assert [b.name for b in bob.state.snapshot().books] == ["Foundation"]
        assert bob.tick() == []

    async def test_no_trade_when_nobody_holds_the_book(self, authority, catalog, config):
        authority.add_agent("alice", goals=[("Hyperion", 90)], money=100)
        authority.add_agent("bob", books=["Dune"])
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, authority, config)
        make_agent("bob", catalog, transport, authority, config)
        await alice.settlement.refresh()

        (task,) = alice.tick()
        outcome = await asyncio.wait_for(task, 2.0)
        assert outcome.state == "DONE"
        assert outcome.reason == "no-acceptable-offer"
        assert authority.transactions == []

    async def test_one_round_per_unsatisfied_goal(self, authority, catalog, config):
        authority.add_agent(
            "alice", books=["Dune"], goals=[("Dune", 80), ("Hyperion", 70), ("Foundation", 60)],
        )
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, authority, config)
        await alice.settlement.refresh()

        tasks = alice.tick()
        outcomes = await asyncio.gather(*tasks)
        assert len(tasks) == 2
        assert all(o.reason == "no-peers" for o in outcomes)

    async def test_double_sell_is_rejected_by_authority(self, authority, catalog, config):
        authority.add_agent("bob", books=["Dune"])
        authority.add_agent("alice", goals=[("Dune", 100)], money=100)
        authority.add_agent("carol", goals=[("Dune", 100)], money=100)
        transport = LocalTransport()
        agents = [make_agent(a, catalog, transport, authority, config)
                  for a in ("bob", "alice", "carol")]
        for agent in agents:
            await agent.settlement.refresh()
        _, alice, carol = agents

        # Both buyers ask before bob has sold anything
        tasks = alice.tick() + carol.tick()
        outcomes = await asyncio.wait_for(asyncio.gather(*tasks), 3.0)
        await settle_all(transport, *agents)

        winners = [o for o in outcomes if o.succeeded]
        losers = [o for o in outcomes if not o.succeeded]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].state == "FAILED"
        assert losers[0].reason == "peer-failure"

        holders = [a for a in ("alice", "carol") if authority.book_names(a) == ["Dune"]]
        assert len(holders) == 1
        assert authority.book_names("bob") == []
        assert authority.money("bob") == 80
        # bob's half plus the winner's half; the loser never submitted
        assert len(authority.transactions) == 2


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class TestDispatch:

    async def test_late_reply_is_dropped(self, market, catalog, config):
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, market, config)

        await alice.deliver(Envelope("bob", "alice", "trade-gone", Completion()))
        assert alice._tasks == set()
        assert alice._responders == {}
        assert not transport.history

    async def test_undecodable_content_is_answered(self, market, catalog, config):
        transport = LocalTransport()
        make_agent("alice", catalog, transport, market, config)
        bob = make_agent("bob", catalog, transport, market, config)
        await bob.settlement.refresh()

        await bob.deliver(Envelope("alice", "bob", "trade-x", {"type": "haggle"}))
        await settle_all(transport, bob)

        (reply,) = transport.history
        assert reply.receiver == "alice"
        assert reply.conversation_id == "trade-x"
        assert isinstance(reply.message, NotUnderstood)
        assert bob._responders == {}

    async def test_history_keeps_only_recent_envelopes(self, market, catalog, config):
        transport = LocalTransport(history_size=2)
        make_agent("alice", catalog, transport, market, config)

        for n in range(3):
            await transport.send(Envelope("bob", "alice", f"trade-{n}", Completion()))
        await transport.drain()

        assert [e.conversation_id for e in transport.history] == ["trade-1", "trade-2"]

    async def test_replies_route_to_owning_round(self, market, catalog, config):
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, market, config)
        bob = make_agent("bob", catalog, transport, market, config)
        await alice.settlement.refresh()
        await bob.settlement.refresh()

        task = alice.buy(Book("Dune"))
        (conversation_id,) = alice._initiators
        assert alice._initiators[conversation_id].book == Book("Dune")

        outcome = await asyncio.wait_for(task, 2.0)
        await settle_all(transport, alice, bob)
        assert outcome.conversation_id == conversation_id
        assert outcome.succeeded
        # Registry entries go away with their rounds
        assert alice._initiators == {}
        assert bob._responders == {}

    async def test_crashed_round_is_logged(self, market, catalog, config, monkeypatch, caplog):
        async def explode(self):
            raise RuntimeError("boom")

        monkeypatch.setattr(NegotiationInitiator, "run", explode)
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, market, config)

        with caplog.at_level(logging.ERROR, logger="book_trader.agent"):
            alice.buy(Book("Dune"))
            await alice.wait_idle()

        assert "negotiation round crashed" in caplog.text
        assert alice._initiators == {}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    async def test_ticker_trades_until_goals_are_met(self, market, catalog, config):
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, market, config)
        bob = make_agent("bob", catalog, transport, market, config)

        async with alice, bob:
            for _ in range(60):
                if market.book_names("alice") == ["Dune"]:
                    break
                await asyncio.sleep(0.05)

        assert market.book_names("alice") == ["Dune"]
        assert market.book_names("bob") == ["Foundation"]
        assert market.money("alice") == 30
        assert alice._ticker is None

    async def test_start_loads_snapshot(self, market, catalog, config):
        transport = LocalTransport()
        alice = make_agent("alice", catalog, transport, market, config)

        await alice.start()
        try:
            assert alice.state.snapshot().money == 50
            assert alice.state.version == 1
        finally:
            await alice.stop()
        assert alice.settlement._http.is_closed
