"""
商業狀態、對話訊息與檔案片段的資料模型
JSON 欄位使用 camelCase 別名，與前端一致
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Status(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    VISUALIZING = "VISUALIZING"


class InsightType(str, Enum):
    GENERAL = "GENERAL"
    FINANCIAL = "FINANCIAL"
    INVENTORY = "INVENTORY"
    ALERT = "ALERT"


class Sender(str, Enum):
    USER = "user"
    SYSTEM = "system"


class ChartType(str, Enum):
    BAR = "bar"
    PIE = "pie"
    LINE = "line"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)


class ChartPoint(_CamelModel):
    name: str
    value: float


class ChartData(_CamelModel):
    """圖表資料 (bar / pie / line)"""

    type: ChartType
    title: str
    data: List[ChartPoint] = Field(default_factory=list)


class TableRow(_CamelModel):
    data: List[str] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _stringify(cls, value):
        # AI 偶爾會回傳數字，表格一律以字串呈現
        if isinstance(value, list):
            return ["" if v is None else str(v) for v in value]
        return value


class TableData(_CamelModel):
    """表格資料，rows[i].data 與 columns 依位置對齊"""

    title: str
    columns: List[str] = Field(default_factory=list)
    rows: List[TableRow] = Field(default_factory=list)


class BusinessState(_CamelModel):
    """對話目前的分析狀態 (每次指令後整體替換)"""

    status: Status = Status.IDLE
    insight_type: InsightType = Field(default=InsightType.GENERAL, alias="insightType")
    confidence_score: int = Field(default=0, ge=0, le=100, alias="confidenceScore")
    records_loaded: int = Field(default=0, ge=0, alias="recordsLoaded")
    message: Optional[str] = None
    chart_data: Optional[ChartData] = Field(default=None, alias="chartData")
    table_data: Optional[TableData] = Field(default=None, alias="tableData")

    def to_public(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


INITIAL_BUSINESS_STATE = BusinessState()


class AIAnalysis(_CamelModel):
    """
    AI 回覆的嚴格結構

    status / insightType / confidenceScore / message 為必填；
    recordsLoaded 只是 AI 的自我回報，之後會經過本地校正。
    """

    status: Status
    insight_type: InsightType = Field(alias="insightType")
    confidence_score: int = Field(alias="confidenceScore")
    records_loaded: int = Field(default=0, alias="recordsLoaded")
    message: str = Field(min_length=1)
    chart_data: Optional[ChartData] = Field(default=None, alias="chartData")
    table_data: Optional[TableData] = Field(default=None, alias="tableData")

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("confidenceScore must be a number")
        return max(0, min(100, int(round(value))))

    @field_validator("records_loaded", mode="before")
    @classmethod
    def _coerce_records(cls, value):
        if value is None:
            return 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("recordsLoaded must be a number")
        return max(0, int(value))

    @field_validator("message")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class TerminalMessage(_CamelModel):
    """持久化的對話訊息 (只新增，不修改)"""

    id: str = ""
    sender: Sender
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)
    chart_data: Optional[ChartData] = Field(default=None, alias="chartData")
    table_data: Optional[TableData] = Field(default=None, alias="tableData")
    # 由儲存層指派的排序鍵
    created_at: Optional[int] = Field(default=None, alias="createdAt")

    def to_record(self) -> dict:
        """轉成儲存格式 (None 欄位不寫入)"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FileSnippet(_CamelModel):
    """上傳表格的片段：content 最多保留 SNIPPET_MAX_ROWS 筆資料列"""

    name: str
    content: str
    true_row_count: int = Field(default=0, ge=0, alias="trueRowCount")


class AppUser(_CamelModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
