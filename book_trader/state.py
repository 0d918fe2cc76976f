"""
state.py — The agent's guarded snapshot of inventory, goals and money.

Readers take the current AgentSnapshot (immutable) and work from it for
the rest of their decision. The only writer after start-up is the
settlement client, which installs the authority's fresh snapshot whole.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Optional

from .models import AgentSnapshot

logger = logging.getLogger("book_trader.state")


class AgentState:

    def __init__(self, snapshot: Optional[AgentSnapshot] = None):
        self._snapshot = snapshot or AgentSnapshot()
        self._lock = Lock()
        self._version = 0

    def snapshot(self) -> AgentSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> int:
        """Number of snapshots installed since construction."""
        with self._lock:
            return self._version

    def replace(self, snapshot: AgentSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self._version += 1
        logger.debug(
            "Agent state replaced: books=%d goals=%d money=%.2f",
            len(snapshot.books), len(snapshot.goals), snapshot.money,
        )
