# HomeVault - Account API
#
# Endpoints:
#   GET    /api/accounts/status             - Locked/unlocked state
#   POST   /api/accounts/register           - Create account (returns recovery words once)
#   POST   /api/accounts/login              - Unlock an account
#   POST   /api/accounts/logout             - Lock again
#   GET    /api/accounts/me                 - Profile of the active account
#   PUT    /api/accounts/profile            - Display name / avatar
#   POST   /api/accounts/password           - Change password (re-encrypts everything)
#   POST   /api/accounts/recovery/challenge - Ask which recovery words are needed
#   POST   /api/accounts/recovery/reset     - Answer the challenge, set a new password
#   POST   /api/accounts/delete             - Delete account and everything it owns
#   POST   /api/accounts/mnemonic           - Reveal the recovery words
#
# Engine errors are mapped to HTTP status codes in main.py.

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..accounts import RecoveryChallenge, Session
from ..storage.models import Account, AvatarMeta
from .security import require_engine, require_unlocked_session, verify_session_token
from .services import services

router = APIRouter(
    prefix="/api/accounts",
    tags=["accounts"],
    dependencies=[Depends(verify_session_token), Depends(require_engine)],
)


# Request/Response Models
class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)


class AvatarModel(BaseModel):
    data_url: str
    mime: str = "image/png"
    size: int
    width: int
    height: int


class ProfileRequest(BaseModel):
    display_name: str
    avatar: Optional[AvatarModel] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class ChallengeRequest(BaseModel):
    email: str = Field(..., min_length=1)


class RecoveryResetRequest(BaseModel):
    email: str = Field(..., min_length=1)
    answers: Dict[int, str]
    new_password: str = Field(..., min_length=1)


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    email: str
    must_change_password: bool


class RegisterResponse(SessionResponse):
    mnemonic_words: List[str]


class ProfileResponse(BaseModel):
    email: str
    display_name: str
    avatar: Optional[AvatarModel] = None
    must_change_password: bool


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(email=session.email, must_change_password=session.must_change_password)


def _profile_response(account: Account) -> ProfileResponse:
    avatar = None
    if account.avatar is not None:
        avatar = AvatarModel(
            data_url=account.avatar.data_url,
            mime=account.avatar.mime,
            size=account.avatar.size,
            width=account.avatar.width,
            height=account.avatar.height,
        )
    return ProfileResponse(
        email=account.email,
        display_name=account.display_name,
        avatar=avatar,
        must_change_password=account.must_change_password,
    )


# Endpoints

@router.get("/status")
async def get_status():
    """Whether an account is unlocked, and which one."""
    session = services.session
    return {
        "unlocked": session is not None,
        "email": session.email if session else None,
        "must_change_password": session.must_change_password if session else False,
    }


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(request: CredentialsRequest):
    """
    Create an account and unlock it.

    The recovery words are returned only here; the UI must show them once.
    """
    result = await services.accounts.register(request.email, request.password)
    services.session = result.session
    return RegisterResponse(
        email=result.session.email,
        must_change_password=result.session.must_change_password,
        mnemonic_words=result.mnemonic_words,
    )


@router.post("/login", response_model=SessionResponse)
async def login(request: CredentialsRequest):
    services.session = await services.accounts.login(request.email, request.password)
    return _session_response(services.session)


@router.post("/logout")
async def logout():
    await services.accounts.logout(services.session)
    services.session = None
    return {"success": True}


@router.get("/me", response_model=ProfileResponse)
async def get_profile(session: Session = Depends(require_unlocked_session)):
    account = await services.accounts.get_profile(session)
    return _profile_response(account)


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(request: ProfileRequest, session: Session = Depends(require_unlocked_session)):
    avatar = AvatarMeta(**request.avatar.model_dump()) if request.avatar else None
    account = await services.accounts.update_profile(session, request.display_name, avatar)
    return _profile_response(account)


@router.post("/password", response_model=SessionResponse)
async def change_password(request: ChangePasswordRequest, session: Session = Depends(require_unlocked_session)):
    """Change the master password; every credential is re-encrypted."""
    services.session = await services.accounts.change_password(
        session, request.current_password, request.new_password
    )
    return _session_response(services.session)


@router.post("/recovery/challenge")
async def create_recovery_challenge(request: ChallengeRequest):
    challenge = await services.accounts.create_recovery_challenge(request.email)
    return {"email": challenge.email, "positions": challenge.positions}


@router.post("/recovery/reset", response_model=SessionResponse)
async def recover_password(request: RecoveryResetRequest):
    """
    Answer the outstanding challenge for the email and set a new password.

    The answered positions must be exactly the ones the challenge named. Once
    the new password passes validation, the attempt uses the challenge up
    whether or not the words match.
    """
    challenge = RecoveryChallenge(email=request.email, positions=sorted(request.answers))
    session = await services.accounts.recover_password(challenge, request.answers, request.new_password)
    services.session = session
    return _session_response(session)


@router.post("/delete")
async def delete_account(request: PasswordRequest, session: Session = Depends(require_unlocked_session)):
    await services.accounts.delete_account(session, request.password)
    services.session = None
    return {"success": True}


@router.post("/mnemonic")
async def reveal_mnemonic(request: PasswordRequest, session: Session = Depends(require_unlocked_session)):
    words = await services.accounts.reveal_mnemonic(session, request.password)
    return {"words": words}
