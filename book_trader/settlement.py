"""
settlement.py — Client for the external settlement authority.

The authority executes agreed trades and is the single source of truth
for every agent's books and money. All calls to it go through this class.

Design goals:
  - settle() submits one TransactionRequest and, on confirmation,
    replaces the whole AgentState with the authority's fresh snapshot;
    nothing local changes if the authority rejects or cannot be reached,
    and a confirmed trade is never reported as failed
  - Every method raises a typed SettlementError on failure so the
    negotiation state machines never inspect raw HTTP responses
  - Transient failures are retried; the idempotency key
    (conversation id + sender) makes a resubmission safe
  - The authority, not this client, rejects double-spent books
  - Pluggable transport for testing (inject an httpx.AsyncClient)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .config import TraderConfig
from .errors import BookTraderError
from .models import AgentSnapshot, Book, Confirmation, Goal, TransactionRequest
from .state import AgentState

logger = logging.getLogger("book_trader.settlement")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SettlementError(BookTraderError):
    """Base exception for all settlement failures."""

    reason = "settlement-failure"


class SettlementAuthError(SettlementError):
    """API key missing, invalid, or expired."""


class SettlementRejectedError(SettlementError):
    """The authority refused the trade: book no longer held, insufficient money, etc."""

    reason = "settlement-rejected"


class SettlementNetworkError(SettlementError):
    """Authority unreachable or failing after retries exhausted."""

    reason = "settlement-unavailable"


# ---------------------------------------------------------------------------
# Internal retry helper
# ---------------------------------------------------------------------------

async def _with_retries(fn, *, retries: int = 3, backoff: float = 0.5, label: str = ""):
    """
    Await fn(), retrying up to `retries` times on transient network errors
    or 5xx responses. Raises SettlementNetworkError if every attempt fails.

    Auth and rejection errors are not retried: they describe the request,
    not the connection.
    """
    last_exc = None
    for attempt in range(1, retries + 1):
        try:
            return await fn()
        except (httpx.TimeoutException, httpx.NetworkError, SettlementNetworkError) as exc:
            last_exc = exc
            wait = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Settlement %s: retriable error on attempt %d/%d, retrying in %.1fs: %s",
                label, attempt, retries, wait, exc,
            )
            if attempt < retries:
                await asyncio.sleep(wait)
    raise SettlementNetworkError(
        f"{label} failed after {retries} attempts: {last_exc}"
    ) from last_exc


# ---------------------------------------------------------------------------
# Main client
# ---------------------------------------------------------------------------

class SettlementClient:
    """
    Usage:
        client = SettlementClient("alice", state, config)
        await client.refresh()                  # initial snapshot
        confirmation = await client.settle(request)
    """

    def __init__(
        self,
        agent_id: str,
        state: AgentState,
        config: Optional[TraderConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        backoff: float = 0.5,
    ):
        self.agent_id = agent_id
        self._state = state
        self._config = config or TraderConfig()
        self._backoff = backoff
        headers = {
            "Content-Type": "application/json",
            "X-Client": "book-trader/0.1.0",
        }
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        self._http = http_client or httpx.AsyncClient(
            base_url=self._config.settlement_url,
            headers=headers,
            timeout=self._config.http_timeout,
        )

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def fetch_snapshot(self, agent_id: Optional[str] = None) -> AgentSnapshot:
        """Return the authority's current view of an agent's books, goals and money."""
        agent_id = agent_id or self.agent_id

        async def _call():
            resp = await self._http.get(f"/v1/agents/{agent_id}")
            _raise_for_status(resp, "fetch_snapshot")
            return resp.json()

        data = await _with_retries(
            _call, retries=self._config.retries, backoff=self._backoff, label="fetch_snapshot",
        )
        try:
            return _snapshot_from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise SettlementError(
                f"[fetch_snapshot] Malformed snapshot for {agent_id}: {exc}"
            ) from exc

    async def refresh(self) -> AgentSnapshot:
        """Fetch our own snapshot and install it as the agent state."""
        snapshot = await self.fetch_snapshot()
        self._state.replace(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def submit(self, request: TransactionRequest) -> Confirmation:
        """
        Send one TransactionRequest to the authority.

        Raises:
            SettlementRejectedError: the authority refused the trade.
            SettlementAuthError:     invalid API key.
            SettlementNetworkError:  authority unreachable after retries.
        """
        payload = _transaction_to_dict(request)

        async def _call():
            resp = await self._http.post("/v1/transactions", json=payload)
            if resp.status_code == 409:
                # Already applied under this idempotency key.
                logger.warning(
                    "[submit] Duplicate transaction %s, treating as confirmed",
                    request.idempotency_key,
                )
                return {"status": "duplicate"}
            _raise_for_status(resp, "submit")
            return resp.json()

        data = await _with_retries(
            _call, retries=self._config.retries, backoff=self._backoff, label="submit",
        )
        confirmation = Confirmation(
            transaction_id=data.get("transaction_id", request.idempotency_key),
            conversation_id=request.conversation_id,
            status=data.get("status", "confirmed"),
            settled_at=data.get("settled_at", ""),
        )
        logger.info(
            "Transaction %s: %s -> %s conversation=%s",
            confirmation.status, request.sender, request.receiver, request.conversation_id,
        )
        return confirmation

    async def settle(self, request: TransactionRequest) -> Confirmation:
        """
        Submit the trade, then replace the agent state with the authority's snapshot.

        Once the authority has confirmed, the trade stands: a failed refresh
        is logged and the confirmation still returned. The state stays as it
        was until the next successful refresh.
        """
        confirmation = await self.submit(request)
        try:
            await self.refresh()
        except SettlementError as exc:
            logger.warning(
                "Transaction %s confirmed but snapshot refresh failed: %s",
                confirmation.transaction_id, exc,
            )
        return confirmation

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _raise_for_status(resp: httpx.Response, operation: str) -> None:
    """
    Translate HTTP error codes into typed settlement exceptions.

    Authority error responses are expected to be JSON:
      {"error": "...", "detail": "..."}
    """
    if resp.is_success:
        return

    try:
        body = resp.json()
        message = body.get("detail") or body.get("error") or resp.text
    except Exception:
        message = resp.text

    status = resp.status_code

    if status == 401:
        raise SettlementAuthError(f"[{operation}] Unauthorized: {message}")
    if status in (402, 422):
        raise SettlementRejectedError(f"[{operation}] Rejected: {message}")
    if status == 404:
        raise SettlementError(f"[{operation}] Not found: {message}")
    if 500 <= status < 600:
        raise SettlementNetworkError(f"[{operation}] Server error {status}: {message}")

    raise SettlementError(f"[{operation}] Unexpected {status}: {message}")


def _book_to_dict(book: Book) -> dict:
    return {"name": book.name, "book_id": book.book_id}


def _transaction_to_dict(request: TransactionRequest) -> dict:
    return {
        "sender": request.sender,
        "receiver": request.receiver,
        "conversation_id": request.conversation_id,
        "sending_books": [_book_to_dict(b) for b in request.sending_books],
        "sending_money": request.sending_money,
        "receiving_books": [_book_to_dict(b) for b in request.receiving_books],
        "receiving_money": request.receiving_money,
        "idempotency_key": request.idempotency_key,
    }


def _snapshot_from_dict(data: dict) -> AgentSnapshot:
    return AgentSnapshot(
        books=tuple(
            Book(name=b["name"], book_id=b.get("book_id")) for b in data.get("books", [])
        ),
        goals=tuple(
            Goal(book=Book(name=g["book"]["name"]), value=float(g["value"]))
            for g in data.get("goals", [])
        ),
        money=float(data["money"]),
    )
