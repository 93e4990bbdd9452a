from fastapi import APIRouter, Depends

from ..ledger import VotingLedger
from ..schemas import ResultRowOut, VoteRequest
from .deps import get_ledger, require_user

vote_router = APIRouter(prefix="/vote", tags=["Vote"])


# ------------------------------
# CAST VOTE
# ------------------------------
@vote_router.post("/cast")
async def cast_vote(vote: VoteRequest, username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    """
    Casts a vote for the logged-in user. When the admin requires
    verification this waits for the face check to finish first.
    """
    proof = await ledger.vote(vote.option)
    return {
        "message": "Thanks for your vote!",
        "option": vote.option,
        "verified_by": proof.modality if proof else None,
    }


@vote_router.get("/options")
async def list_options(username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    voted = ledger.engine.has_voted(username)
    return {
        "options": ledger.engine.options(),
        "voted": voted,
        "choice": ledger.engine.choice_of(username),
        "locked": voted and not ledger.state.policy.allow_multiple_votes,
    }


# ------------------------------
# CHECK IF USER HAS ALREADY VOTED
# ------------------------------
@vote_router.get("/status")
async def vote_status(username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    policy = ledger.state.policy
    return {
        "username": username,
        "voting_open": policy.voting_open,
        "voted": ledger.engine.has_voted(username),
        "choice": ledger.engine.choice_of(username),
        "can_vote": policy.voting_open and (policy.allow_multiple_votes or not ledger.engine.has_voted(username)),
    }


@vote_router.get("/results")
async def voter_results(sort: bool = False, username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    rows = ledger.engine.results_for_voter(sort_by_votes=sort)
    if rows is None:
        return {"hidden": True, "note": "Hidden by admin", "results": []}
    return {
        "hidden": False,
        "total": ledger.engine.total_votes(),
        "results": [ResultRowOut(option=r.option, count=r.count, percent=r.percent) for r in rows],
    }
