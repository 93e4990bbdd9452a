from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..ledger import VotingLedger
from ..schemas import LoginRequest, OptionRequest, PolicyUpdate, ResultRowOut, ResultsOut
from ..security import create_access_token
from .deps import get_ledger, require_admin

router = APIRouter(prefix="/admin", tags=["Admin"])

EXPORT_FILENAME = "votex-data.json"


@router.post("/login")
async def admin_login(payload: LoginRequest, ledger: VotingLedger = Depends(get_ledger)):
    ledger.session.admin_login(payload.username, payload.password)
    token = create_access_token(payload.username.strip(), "admin")
    return {"status": "ok", "access_token": token, "token_type": "bearer", "message": "Admin logged in."}


@router.post("/logout")
async def admin_logout(ledger: VotingLedger = Depends(require_admin)):
    ledger.session.admin_logout()
    return {"status": "ok", "message": "Admin logged out."}


@router.get("/policy")
async def get_policy(ledger: VotingLedger = Depends(require_admin)):
    return ledger.state.policy.to_storage()


@router.patch("/policy")
async def update_policy(update: PolicyUpdate, ledger: VotingLedger = Depends(require_admin)):
    policy = ledger.admin.set_policy(**update.model_dump(exclude_none=True))
    return policy.to_storage()


@router.get("/options")
async def get_options(ledger: VotingLedger = Depends(require_admin)):
    return {"options": ledger.engine.options()}


@router.post("/options", status_code=201)
async def add_option(payload: OptionRequest, ledger: VotingLedger = Depends(require_admin)):
    name = ledger.admin.add_option(payload.name)
    return {"status": "ok", "option": name, "message": "Option added."}


@router.delete("/options/{name}")
async def remove_option(name: str, ledger: VotingLedger = Depends(require_admin)):
    ledger.admin.remove_option(name)
    return {"status": "ok", "option": name, "message": "Option removed."}


@router.post("/reset")
async def reset_votes(ledger: VotingLedger = Depends(require_admin)):
    ledger.admin.reset_votes()
    return {"status": "ok", "message": "Votes reset."}


@router.get("/results", response_model=ResultsOut)
async def admin_results(sort: bool = False, ledger: VotingLedger = Depends(require_admin)):
    rows = ledger.engine.results(sort_by_votes=sort)
    return ResultsOut(
        total=ledger.engine.total_votes(),
        results=[ResultRowOut(option=r.option, count=r.count, percent=r.percent) for r in rows],
    )


@router.get("/export")
async def export_data(ledger: VotingLedger = Depends(require_admin)):
    return Response(
        content=ledger.admin.export_snapshot(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@router.post("/import")
async def import_data(request: Request, ledger: VotingLedger = Depends(require_admin)):
    """Overwrites users, votes, options, vote records and settings with the uploaded JSON."""
    ledger.admin.import_snapshot(await request.body())
    return {"status": "ok", "message": "Imported data."}
