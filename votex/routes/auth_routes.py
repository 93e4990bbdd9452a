from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..gate import BiometricModality, PlatformCredentialModality
from ..ledger import VotingLedger
from ..schemas import LoginRequest, PasswordRequest, RegisterRequest, UsernameRequest
from ..security import create_access_token, score_password
from .deps import current_user, get_ledger, require_user

router = APIRouter(prefix="/auth", tags=["Auth"])


def _logged_in(username: str, message: str, **extra) -> dict:
    token = create_access_token(username, "user")
    return {"status": "ok", "username": username, "access_token": token, "token_type": "bearer",
            "message": message, **extra}


@router.post("/register")
async def register(payload: RegisterRequest, ledger: VotingLedger = Depends(get_ledger)):
    """
    Registers a voter. With ``enroll_face`` the camera scan runs first and a
    face already enrolled under another account is rejected.
    """
    identity = await ledger.register(
        payload.username,
        payload.password,
        enroll_face=payload.enroll_face,
        enroll_platform_credential=payload.enroll_platform_credential,
    )
    return _logged_in(
        identity.username,
        f"Welcome to VoteX, {identity.username}!",
        face_enrolled=ledger.registry.has_face(identity.username),
        platform_credential=ledger.registry.credential_ref(identity.username) is not None,
    )


@router.post("/login")
async def login(payload: LoginRequest, ledger: VotingLedger = Depends(get_ledger)):
    proof = ledger.session.login_with_password(payload.username, payload.password)
    return _logged_in(proof.username, f"Welcome, {proof.username}!")


@router.post("/login/face")
async def login_face(payload: UsernameRequest, ledger: VotingLedger = Depends(get_ledger)):
    proof = await ledger.session.login_with_face(payload.username)
    return _logged_in(proof.username, f"Welcome back, {proof.username}! (Face Login)", distance=proof.distance)


@router.post("/login/platform")
async def login_platform(payload: UsernameRequest, ledger: VotingLedger = Depends(get_ledger)):
    proof = await ledger.session.login_with_platform_credential(payload.username)
    return _logged_in(proof.username, f"Welcome back, {proof.username}! (Biometric Login)")


@router.post("/logout")
async def logout(username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    ledger.session.logout()
    return {"status": "ok", "message": "Logged out."}


@router.post("/enroll/{modality}")
async def enroll(modality: str, username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    if modality == "face":
        await ledger.gate.enroll(username, BiometricModality())
        return {"status": "ok", "message": "Face enrolled successfully!"}
    if modality == "platform":
        await ledger.gate.enroll(username, PlatformCredentialModality())
        return {"status": "ok", "message": "Biometrics registered successfully!"}
    raise HTTPException(status_code=404, detail=f"Unknown enrollment method: {modality}")


@router.post("/verification/cancel")
async def cancel_verification(username: str = Depends(require_user), ledger: VotingLedger = Depends(get_ledger)):
    was_running = ledger.gate.capturing
    ledger.gate.cancel()
    return {"status": "ok", "cancelled": was_running}


@router.get("/me")
async def me(username: Optional[str] = Depends(current_user), ledger: VotingLedger = Depends(get_ledger)):
    return {
        "username": username,
        "voted": ledger.engine.has_voted(username),
        "choice": ledger.engine.choice_of(username),
    }


@router.post("/password-strength")
async def password_strength(payload: PasswordRequest):
    return {"score": score_password(payload.password)}
