"""
API Request 資料模型
"""

from pydantic import BaseModel, Field


class CredentialsRequest(BaseModel):
    email: str
    password: str


class CommandRequest(BaseModel):
    command: str = Field(..., description="使用者輸入的自然語言指令")
