from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..errors import NotAdmin, Unauthenticated
from ..face_utils import InsightFaceCamera
from ..ledger import VotingLedger
from ..security import decode_access_token

bearer = HTTPBearer(auto_error=False)


async def get_ledger(request: Request) -> VotingLedger:
    """The app's ledger, opened from the configured store on first use."""
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        ledger = VotingLedger.open(capability=InsightFaceCamera())
        request.app.state.ledger = ledger
    return ledger


async def token_claims(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Optional[dict]:
    if credentials is None:
        return None
    return decode_access_token(credentials.credentials)


async def current_user(ledger: VotingLedger = Depends(get_ledger), claims: Optional[dict] = Depends(token_claims)) -> Optional[str]:
    """The session's voter, but only for the caller holding that voter's token."""
    username = ledger.session.current_identity
    if not username or not claims or claims.get("role") != "user" or claims.get("sub") != username:
        return None
    return username


async def require_user(username: Optional[str] = Depends(current_user)) -> str:
    if not username:
        raise Unauthenticated()
    return username


async def require_admin(ledger: VotingLedger = Depends(get_ledger), claims: Optional[dict] = Depends(token_claims)) -> VotingLedger:
    if not ledger.session.is_admin or not claims or claims.get("role") != "admin":
        raise NotAdmin()
    return ledger
