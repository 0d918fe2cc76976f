"""
book-trader — An autonomous agent that trades books through contract-net negotiation.

Public API:
    TraderConfig             — Environment-driven configuration
    BookTrader               — The agent: goal-scan scheduler and message dispatch
    NegotiationInitiator     — Buyer-side state machine, one per goal book per tick
    NegotiationResponder     — Seller-side state machine, one per incoming request
    SettlementClient         — HTTP client for the settlement authority
    AgentState               — Guarded, wholesale-replaced agent snapshot
    LocalTransport           — In-memory transport and directory
    Valuation                — Catalog-bound buy/sell valuation
    generate_offers          — Seller-side ProposalSet construction
    select_offer             — Buyer-side feasibility and utility choice
    Book, Goal, Offer, ...   — Shared data records
    BookTraderError          — Base exception
    SettlementError          — Base settlement exception
"""

__version__ = "0.1.0"

from .agent import BookTrader
from .config import TraderConfig
from .errors import (
    BookTraderError,
    InfeasibleError,
    InvalidTransitionError,
    MessageDecodeError,
    NegotiationError,
    NegotiationTimeout,
    NotUnderstoodError,
    PeerFailure,
    TransportFailure,
    UnknownBookError,
)
from .initiator import InitiatorState, NegotiationInitiator
from .messages import (
    Accept,
    Completion,
    Envelope,
    Failure,
    NotUnderstood,
    Proposal,
    Refusal,
    Reject,
    Request,
    parse_message,
    to_dict,
)
from .models import (
    AgentSnapshot,
    Book,
    Confirmation,
    Goal,
    Offer,
    ProposalSet,
    RoundOutcome,
    Selection,
    TransactionRequest,
)
from .offers import generate_offers
from .responder import NegotiationResponder, ResponderState
from .selection import Choice, resolve_offer, select_offer
from .settlement import (
    SettlementAuthError,
    SettlementClient,
    SettlementError,
    SettlementNetworkError,
    SettlementRejectedError,
)
from .state import AgentState
from .transport import LocalTransport
from .valuation import (
    Valuation,
    buy_value,
    catalog_price,
    offer_utility,
    sell_value,
    unsatisfied_goal_books,
    unsatisfied_goals,
)

__all__ = [
    "__version__",
    "TraderConfig",
    "BookTrader",
    "NegotiationInitiator",
    "InitiatorState",
    "NegotiationResponder",
    "ResponderState",
    "SettlementClient",
    "AgentState",
    "LocalTransport",
    "Valuation",
    "catalog_price",
    "sell_value",
    "buy_value",
    "offer_utility",
    "unsatisfied_goals",
    "unsatisfied_goal_books",
    "generate_offers",
    "select_offer",
    "resolve_offer",
    "Choice",
    "Envelope",
    "Request",
    "Proposal",
    "Refusal",
    "Accept",
    "Reject",
    "Completion",
    "Failure",
    "NotUnderstood",
    "to_dict",
    "parse_message",
    "AgentSnapshot",
    "Book",
    "Goal",
    "Offer",
    "ProposalSet",
    "Selection",
    "TransactionRequest",
    "Confirmation",
    "RoundOutcome",
    "BookTraderError",
    "UnknownBookError",
    "MessageDecodeError",
    "NegotiationError",
    "NotUnderstoodError",
    "InfeasibleError",
    "NegotiationTimeout",
    "PeerFailure",
    "TransportFailure",
    "InvalidTransitionError",
    "SettlementError",
    "SettlementAuthError",
    "SettlementRejectedError",
    "SettlementNetworkError",
]
