"""
自定義異常類別
提供結構化的錯誤處理機制
"""

from typing import Optional, Dict, Any


class InsightDeskException(Exception):
    """基礎異常類別"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典格式"""
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(InsightDeskException):
    """數據驗證錯誤"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message, code="VALIDATION_ERROR", status_code=400, details=details
        )


class PersistenceError(InsightDeskException):
    """儲存層讀寫失敗 (不自動重試)"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
            status_code=503,
            details=details,
        )


class AIResponseError(InsightDeskException):
    """AI 服務連線失敗、非成功回應或結構不符"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message, code="AI_RESPONSE_ERROR", status_code=502, details=details
        )


class IngestionDiscard(InsightDeskException):
    """檔案或工作表沒有可用資料，僅記錄，不對外顯示"""

    def __init__(self, name: str, reason: str):
        super().__init__(
            message=f"已略過 {name}: {reason}",
            code="INGESTION_DISCARD",
            status_code=422,
            details={"name": name, "reason": reason},
        )
        self.name = name
        self.reason = reason


# 身分驗證錯誤代碼 -> 使用者可見訊息
AUTH_ERROR_MESSAGES = {
    "invalid-credential": "Invalid email or password.",
    "email-already-in-use": "This email is already registered.",
    "weak-password": "Password should be at least 6 characters.",
}
AUTH_FALLBACK_MESSAGE = "Authentication failed."

_AUTH_STATUS_CODES = {
    "invalid-credential": 401,
    "email-already-in-use": 409,
    "weak-password": 400,
}


class AuthError(InsightDeskException):
    """登入/註冊失敗，對應到固定的使用者訊息"""

    def __init__(self, auth_code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=AUTH_ERROR_MESSAGES.get(auth_code, AUTH_FALLBACK_MESSAGE),
            code="AUTH_ERROR",
            status_code=_AUTH_STATUS_CODES.get(auth_code, 400),
            details=details or {"auth_code": auth_code},
        )
        self.auth_code = auth_code


class NotAuthenticatedError(InsightDeskException):
    """未登入或 token 已失效"""

    def __init__(self, message: str = "Not authenticated."):
        super().__init__(message=message, code="NOT_AUTHENTICATED", status_code=401)


class CommandInProgressError(InsightDeskException):
    """前一個指令尚未完成"""

    def __init__(self, user_id: str):
        super().__init__(
            message="A command is already being processed.",
            code="COMMAND_IN_PROGRESS",
            status_code=409,
            details={"user_id": user_id},
        )


class SecurityError(InsightDeskException):
    """安全錯誤"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message, code="SECURITY_ERROR", status_code=403, details=details
        )
