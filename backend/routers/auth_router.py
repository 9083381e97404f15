"""
Auth Router - 帳號相關 API
"""

from fastapi import APIRouter, Depends

from backend.dependencies import (
    get_auth_service,
    get_bearer_token,
    get_current_user,
    get_orchestrator,
)
from backend.models.business_models import AppUser
from backend.models.request_models import CredentialsRequest
from backend.models.response_models import create_success_response
from backend.services.auth_service import AuthService
from backend.services.orchestrator_service import ConversationOrchestrator

router = APIRouter()


@router.post("/signup")
async def signup(
    req: CredentialsRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """註冊並登入"""
    return create_success_response(data=auth_service.signup(req.email, req.password))


@router.post("/login")
async def login(
    req: CredentialsRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """登入，回傳 token"""
    return create_success_response(data=auth_service.login(req.email, req.password))


@router.post("/logout")
async def logout(
    user: AppUser = Depends(get_current_user),
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """登出並重置對話狀態"""
    auth_service.logout(token)
    orchestrator.reset_state(user.uid)
    return create_success_response(message="Signed out")


@router.get("/me")
async def me(user: AppUser = Depends(get_current_user)):
    return create_success_response(data=user.model_dump(by_alias=True))
