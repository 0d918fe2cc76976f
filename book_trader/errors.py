"""
errors.py — Exception hierarchy for the negotiation core.

Every error here is scoped to a single negotiation round. The state
machines catch them at the round boundary and turn them into a
RoundOutcome; none of them is fatal to the agent.

Settlement errors live next to the client that raises them
(settlement.py) but share the BookTraderError base.
"""


class BookTraderError(Exception):
    """Base exception for all book-trader errors."""


class UnknownBookError(BookTraderError):
    """The book name is not in the public catalog."""


class MessageDecodeError(BookTraderError):
    """Message content is malformed or of an unknown type."""


# ---------------------------------------------------------------------------
# Negotiation round errors
# ---------------------------------------------------------------------------

class NegotiationError(BookTraderError):
    """Base for failures that end one negotiation round."""

    reason = "negotiation-error"


class NotUnderstoodError(NegotiationError):
    """The peer sent content we cannot interpret at this point of the protocol."""

    reason = "not-understood"


class InfeasibleError(NegotiationError):
    """The responder does not hold every requested book. Answered with a refusal."""

    reason = "infeasible"


class NegotiationTimeout(NegotiationError):
    """No reply arrived before the round's deadline."""

    reason = "timeout"


class PeerFailure(NegotiationError):
    """The peer aborted the round (its settlement failed or it rejected our acceptance)."""

    reason = "peer-failure"


class TransportFailure(NegotiationError):
    """The message transport could not deliver an envelope."""

    reason = "transport-failure"


class InvalidTransitionError(NegotiationError):
    """A state machine was asked to make a transition its table forbids."""

    reason = "invalid-transition"
