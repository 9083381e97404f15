"""
Chat Router - 對話指令與歷史
"""

from fastapi import APIRouter, Depends

from backend.dependencies import get_current_user, get_orchestrator, get_session_store
from backend.models.business_models import AppUser
from backend.models.request_models import CommandRequest
from backend.models.response_models import create_success_response
from backend.services.orchestrator_service import ConversationOrchestrator
from backend.services.session_store import SessionStore

router = APIRouter()


@router.post("/command")
async def send_command(
    req: CommandRequest,
    user: AppUser = Depends(get_current_user),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """送出指令；處理中再送會回傳 409"""
    outcome = await orchestrator.submit_command(user.uid, req.command)
    return create_success_response(
        data={
            "state": outcome.state.to_public(),
            "celebrate": outcome.celebrate,
            "failed": outcome.failed,
        },
        message=outcome.state.message,
    )


@router.get("/history")
async def get_history(
    user: AppUser = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    """依建立順序取得對話歷史"""
    messages = await store.list_messages(user.uid)
    return create_success_response(
        data={"messages": [m.to_record() for m in messages]}
    )


@router.get("/state")
async def get_state(
    user: AppUser = Depends(get_current_user),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    return create_success_response(
        data={
            "state": orchestrator.get_state(user.uid).to_public(),
            "processing": orchestrator.is_processing(user.uid),
        }
    )
