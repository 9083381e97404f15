"""
標準 API 回應模型
提供統一的 API 回應格式
"""

from pydantic import BaseModel, Field
from typing import Optional, Any, Dict
from datetime import datetime


class APIResponse(BaseModel):
    """標準 API 成功回應"""

    success: bool = Field(default=True, description="請求是否成功")
    data: Optional[Any] = Field(default=None, description="回應數據")
    message: Optional[str] = Field(default=None, description="附加訊息")
    code: str = Field(default="OK", description="狀態碼")
    timestamp: datetime = Field(default_factory=datetime.now, description="回應時間")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": {"state": {"status": "IDLE", "recordsLoaded": 600}},
                "message": "Analysis complete.",
                "code": "OK",
                "timestamp": "2026-02-03T17:00:00",
            }
        }


class ErrorResponse(BaseModel):
    """標準 API 錯誤回應"""

    success: bool = Field(default=False, description="請求是否成功")
    error: str = Field(..., description="錯誤訊息")
    code: str = Field(default="ERROR", description="錯誤碼")
    details: Optional[Dict[str, Any]] = Field(default=None, description="詳細錯誤資訊")
    timestamp: datetime = Field(default_factory=datetime.now, description="回應時間")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "This email is already registered.",
                "code": "AUTH_ERROR",
                "details": {"auth_code": "email-already-in-use"},
                "timestamp": "2026-02-03T17:00:00",
            }
        }


def create_success_response(
    data: Any = None, message: str = None, code: str = "OK"
) -> APIResponse:
    """
    建立成功回應的便捷函數

    Args:
        data: 回應數據
        message: 附加訊息
        code: 狀態碼

    Returns:
        APIResponse 物件
    """
    return APIResponse(success=True, data=data, message=message, code=code)


def create_error_response(
    error: str, code: str = "ERROR", details: Dict[str, Any] = None
) -> ErrorResponse:
    """
    建立錯誤回應的便捷函數

    Args:
        error: 錯誤訊息
        code: 錯誤碼
        details: 詳細錯誤資訊

    Returns:
        ErrorResponse 物件
    """
    return ErrorResponse(success=False, error=error, code=code, details=details)
