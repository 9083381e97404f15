"""
依賴注入
提供服務的單例實例
"""

from typing import Optional

from fastapi import Depends, Header

from backend.models.business_models import AppUser
from backend.services.auth_service import AuthService
from backend.services.ingestion_service import IngestionService
from backend.services.orchestrator_service import ConversationOrchestrator
from backend.services.session_store import SessionStore, create_session_store
from backend.services.upload_service import UploadService
from core_logic.llm_analyst import LLMAnalyst

# 單例實例
_session_store: SessionStore = None
_auth_service: AuthService = None
_llm_analyst: LLMAnalyst = None
_orchestrator: ConversationOrchestrator = None
_upload_service: UploadService = None


def get_session_store() -> SessionStore:
    """取得儲存層"""
    global _session_store
    if _session_store is None:
        _session_store = create_session_store()
    return _session_store


def get_auth_service() -> AuthService:
    """取得帳號服務"""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def get_llm_analyst() -> LLMAnalyst:
    global _llm_analyst
    if _llm_analyst is None:
        _llm_analyst = LLMAnalyst()
    return _llm_analyst


def get_orchestrator() -> ConversationOrchestrator:
    """取得對話協調器"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ConversationOrchestrator(get_session_store(), get_llm_analyst())
    return _orchestrator


def get_upload_service() -> UploadService:
    """取得上傳服務"""
    global _upload_service
    if _upload_service is None:
        _upload_service = UploadService(
            get_session_store(), get_orchestrator(), IngestionService()
        )
    return _upload_service


def get_bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_user(
    token: Optional[str] = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> AppUser:
    """由 Authorization: Bearer <token> 取得目前使用者"""
    return auth_service.resolve_token(token)


def reset_dependencies():
    """清除所有單例 (測試用)"""
    global _session_store, _auth_service, _llm_analyst, _orchestrator, _upload_service
    _session_store = None
    _auth_service = None
    _llm_analyst = None
    _orchestrator = None
    _upload_service = None
