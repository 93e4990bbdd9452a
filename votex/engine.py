# votex/engine.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import VOTE_VERIFICATION_MODALITY
from .errors import AlreadyVoted, Unauthenticated, UnknownOption, VotingClosed
from .gate import Modality, Proof, VerificationGate, modality_from_name
from .registry import IdentityRegistry
from .state import VotingState, save_all
from .storage import PersistentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultRow:
    option: str
    count: int
    percent: int


def percent(count: int, total: int) -> int:
    if not total:
        return 0
    # round half up
    return int(count * 100 / total + 0.5)


class VotingEngine:
    """
    Casts votes and answers read queries over the tally.

    Under single-vote policy an identity moves from not-voted to voted(option)
    once; under multi-vote policy every cast is independent and no vote record
    is kept.
    """

    def __init__(self, state: VotingState, store: PersistentStore, registry: IdentityRegistry, gate: VerificationGate,
                 default_modality: str = VOTE_VERIFICATION_MODALITY):
        self.state = state
        self.store = store
        self.registry = registry
        self.gate = gate
        self.default_modality = default_modality

    def _check(self, identity: Optional[str], option: str) -> None:
        if not self.registry.exists(identity):
            raise Unauthenticated()
        policy = self.state.policy
        if not policy.voting_open:
            raise VotingClosed()
        if not policy.allow_multiple_votes and self.has_voted(identity):
            raise AlreadyVoted()
        if option not in self.state.options:
            raise UnknownOption()

    async def cast_vote(self, identity: Optional[str], option: str, modality: Optional[Modality] = None) -> Optional[Proof]:
        self._check(identity, option)

        proof = None
        if self.state.policy.require_verification:
            proof = await self.gate.verify(identity, modality or modality_from_name(self.default_modality))
            # verification suspended; state may have moved in the meantime
            self._check(identity, option)

        self.state.votes[option] = self.state.votes.get(option, 0) + 1
        if not self.state.policy.allow_multiple_votes:
            self.state.user_votes[identity] = option
        save_all(self.store, self.state)
        logger.info(f"Vote recorded for {option!r} by {identity}")
        return proof

    # --- read accessors ---
    def has_voted(self, identity: Optional[str]) -> bool:
        return bool(identity) and identity in self.state.user_votes

    def choice_of(self, identity: Optional[str]) -> Optional[str]:
        if not identity:
            return None
        return self.state.user_votes.get(identity)

    def options(self) -> List[str]:
        return list(self.state.options)

    def total_votes(self) -> int:
        return sum(self.state.votes.values())

    def results(self, sort_by_votes: bool = False) -> List[ResultRow]:
        total = self.total_votes()
        rows = [ResultRow(opt, self.state.votes.get(opt, 0), 0) for opt in self.state.options]
        rows = [ResultRow(r.option, r.count, percent(r.count, total)) for r in rows]
        if sort_by_votes:
            rows.sort(key=lambda r: r.count, reverse=True)
        return rows

    def results_for_voter(self, sort_by_votes: bool = False) -> Optional[List[ResultRow]]:
        """Results as a voter may see them; None while hidden by the admin."""
        if not self.state.policy.results_visible_to_voters:
            return None
        return self.results(sort_by_votes)
