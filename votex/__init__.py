"""VoteX: locally persisted, identity-gated voting ledger."""

__version__ = "0.1.0"
